#!/usr/bin/env python3
"""
Train the MNIST digit classifier and save it as a binary model file.

Usage:
    python scripts/train_mnist.py [--data-dir data] [--epochs 10]

The script will:
1. Load the uncompressed IDX training and test files
2. Normalise the images to [0, 1]
3. Train a 784-128-64-10 network with Adam and cross-entropy
4. Report test accuracy and save the model
"""

import os
import sys
import argparse
import logging

# Allow running from a source checkout without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bpnn.classifier import MNISTClassifier
from bpnn.mnist_loader import load_mnist, normalize_images, display_image

logger = logging.getLogger('train_mnist')


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument('--data-dir', default=os.getenv('MNIST_DATA_DIR', 'data'),
                        help='Directory holding the IDX files')
    parser.add_argument('--output', default=os.getenv(
                            'MNIST_MODEL_PATH',
                            os.path.join('models', 'mnist_model.bin')),
                        help='Where to write the trained model')
    parser.add_argument('--epochs', type=int, default=10)
    parser.add_argument('--batch-size', type=int, default=32)
    parser.add_argument('--learning-rate', type=float, default=0.001)
    parser.add_argument('--limit', type=int, default=None,
                        help='Train on the first N images only')
    parser.add_argument('--seed', type=int, default=None)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main training function."""
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    args = parse_args(argv)

    print("=" * 60)
    print("MNIST Classifier Training")
    print("=" * 60)

    train_data = load_mnist(
        os.path.join(args.data_dir, 'train-images-idx3-ubyte'),
        os.path.join(args.data_dir, 'train-labels-idx1-ubyte')
    )
    test_data = load_mnist(
        os.path.join(args.data_dir, 't10k-images-idx3-ubyte'),
        os.path.join(args.data_dir, 't10k-labels-idx1-ubyte')
    )
    if train_data is None or test_data is None:
        print(f"❌ Error: could not load MNIST data from {args.data_dir}")
        return 1

    normalize_images(train_data)
    normalize_images(test_data)

    if args.limit:
        train_data.images = train_data.images[:args.limit]
        train_data.labels = train_data.labels[:args.limit]

    print(f"\n📂 Loaded {train_data.num_images} training and "
          f"{test_data.num_images} test images")
    print(f"   First training image (label {train_data.labels[0]}):")
    print(display_image(train_data.images[0]))

    classifier = MNISTClassifier(args.learning_rate, seed=args.seed)
    classifier.build_network()
    classifier.train(train_data, epochs=args.epochs, batch_size=args.batch_size)

    accuracy = classifier.test(test_data)
    print(f"\n✅ Test accuracy: {accuracy:.2%}")

    output_dir = os.path.dirname(args.output)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    if not classifier.save_model(args.output):
        print(f"❌ Error: could not save model to {args.output}")
        return 1

    print(f"💾 Model saved to {args.output}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
