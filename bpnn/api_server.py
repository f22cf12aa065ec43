"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for the network engine.

This module provides endpoints for:
- Building networks layer by layer and training them on posted samples
  with real-time progress updates via WebSockets
- Predicting with trained networks
- Saving and loading networks as binary model files
- The two-class point classifier demo
- MNIST digit recognition with a pre-trained model

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent for async background training tasks
- Matplotlib for rendering digit images
"""

import os
import re
import sys
import uuid
import base64
import logging
from io import BytesIO
from typing import Dict, Any, List, Optional, Tuple

import gevent
import numpy as np
from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO

# Use non-GUI backend for matplotlib (required for server environments)
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

# Local imports
from bpnn.activations import ActivationType
from bpnn.classifier import MNISTClassifier, PointClassifier
from bpnn.exceptions import NeuralNetworkError
from bpnn.losses import LossType
from bpnn.mnist_loader import MNISTData, load_mnist, normalize_images
from bpnn.network import Network
from bpnn.optimizers import OptimizerType

# ============================================================================
# LOGGING SETUP
# ============================================================================

def configure_logging() -> None:
    """
    Set up logging based on environment.

    - In production: Show fewer logs (less noise) but keep important logs
    - In development: Show more detailed logs for debugging
    """
    log_level_str = os.getenv('LOG_LEVEL', 'INFO').upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    is_production = os.getenv('FLASK_ENV') == 'production'

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # In production, silence noisy third-party logs but keep our logs visible
    if is_production:
        for logger_name in ['socketio', 'engineio', 'engineio.server',
                            'socketio.server', 'werkzeug']:
            logging.getLogger(logger_name).setLevel(logging.WARNING)
        logging.getLogger('bpnn').setLevel(logging.INFO)
    else:
        logging.getLogger('socketio').setLevel(logging.INFO)
        logging.getLogger('engineio').setLevel(logging.INFO)


configure_logging()
logger = logging.getLogger(__name__)

# ============================================================================
# CONFIGURATION
# ============================================================================

MODEL_DIR = os.getenv('MODEL_DIR', 'models')
MNIST_DATA_DIR = os.getenv('MNIST_DATA_DIR', 'data')
MNIST_MODEL_PATH = os.getenv(
    'MNIST_MODEL_PATH', os.path.join(MODEL_DIR, 'mnist_model.bin')
)

ACTIVATIONS = {
    'sigmoid': ActivationType.SIGMOID,
    'relu': ActivationType.RELU,
    'softmax': ActivationType.SOFTMAX
}
LOSSES = {
    'mse': LossType.MEAN_SQUARED_ERROR,
    'cross_entropy': LossType.CROSS_ENTROPY
}
OPTIMIZERS = {
    'sgd': OptimizerType.SGD,
    'adam': OptimizerType.ADAM
}

# Network ids double as model file names
NETWORK_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]{1,64}$')

# ============================================================================
# FLASK APP SETUP
# ============================================================================

app = Flask(__name__)
CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

is_production = os.getenv('FLASK_ENV') == 'production'

# SocketIO enables real-time communication (WebSockets) for training updates
socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode='gevent',
    logger=not is_production,
    engineio_logger=not is_production,
    ping_timeout=60,
    ping_interval=25
)

# ============================================================================
# GLOBAL STATE
# ============================================================================

# Networks currently loaded in memory: {network_id: network_info}
active_networks: Dict[str, Dict[str, Any]] = {}

# Training jobs being tracked: {job_id: job_info}
training_jobs: Dict[str, Dict[str, Any]] = {}

# Two-class point demo
point_classifier = PointClassifier()
point_training = {'status': 'idle', 'epoch': 0, 'loss': None}

# MNIST classifier and test set, loaded at startup when available
mnist_classifier: Optional[MNISTClassifier] = None
test_data: Optional[MNISTData] = None


# ============================================================================
# DATA LOADING
# ============================================================================

def load_mnist_test_data() -> None:
    """
    Load the MNIST test set into a global variable.

    Missing files are not an error: the example endpoint is simply
    unavailable.
    """
    global test_data

    images_file = os.path.join(MNIST_DATA_DIR, 't10k-images-idx3-ubyte')
    labels_file = os.path.join(MNIST_DATA_DIR, 't10k-labels-idx1-ubyte')

    if not (os.path.exists(images_file) and os.path.exists(labels_file)):
        logger.info(f"No MNIST test data in '{MNIST_DATA_DIR}'")
        return

    data = load_mnist(images_file, labels_file)
    if data is None:
        logger.warning("MNIST test data could not be loaded")
        return

    normalize_images(data)
    test_data = data
    logger.info(f"Data loaded: {test_data.num_images} test images")


def load_mnist_model() -> None:
    """Load the pre-trained MNIST classifier if its model file exists."""
    global mnist_classifier

    if not os.path.exists(MNIST_MODEL_PATH):
        logger.info(f"No MNIST model at '{MNIST_MODEL_PATH}'")
        return

    classifier = MNISTClassifier()
    if classifier.load_model(MNIST_MODEL_PATH):
        mnist_classifier = classifier
        logger.info("MNIST model loaded")
    else:
        logger.warning(f"Failed to load MNIST model from '{MNIST_MODEL_PATH}'")


load_mnist_test_data()
load_mnist_model()


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def array_to_float_list(array: np.ndarray) -> List[float]:
    """Convert a numpy array to a list of floats (for JSON serialization)."""
    return [float(val) for val in np.asarray(array).flatten()]


def model_path(network_id: str) -> str:
    return os.path.join(MODEL_DIR, f'{network_id}.bin')


def parse_layers(layers: Any) -> Tuple[List[Tuple[int, ActivationType]], Optional[str]]:
    """
    Validate a layer list from a request body.

    Returns:
        (parsed layers, error message or None)
    """
    if not isinstance(layers, list) or not layers:
        return [], 'layers must be a non-empty list'

    parsed = []
    for spec in layers:
        if not isinstance(spec, dict):
            return [], 'each layer must be an object'
        units = spec.get('units')
        activation = spec.get('activation', 'sigmoid')
        if not isinstance(units, int) or units < 1:
            return [], 'units must be a positive integer'
        if activation not in ACTIVATIONS:
            return [], f'unknown activation: {activation}'
        parsed.append((units, ACTIVATIONS[activation]))
    return parsed, None


def network_summary(network_id: str, info: Dict[str, Any]) -> Dict[str, Any]:
    net = info['network']
    return {
        'network_id': network_id,
        'sizes': net.sizes,
        'trained': info['trained'],
        'busy': info['busy'],
        'loss': info.get('loss'),
        **net.network_info()
    }


def create_digit_image(image_data: np.ndarray, predicted: int, actual: int) -> str:
    """
    Create a base64-encoded PNG image of a digit.

    Args:
        image_data: 784-element array representing the 28x28 digit image
        predicted: The digit the network predicted (0-9)
        actual: The correct digit (0-9)

    Returns:
        Base64-encoded PNG image string
    """
    plt.figure(figsize=(3, 3))
    plt.imshow(np.asarray(image_data).reshape(28, 28), cmap='gray')
    plt.title(f"Predicted: {predicted} | Actual: {actual}")
    plt.axis('off')

    # Save image to a bytes buffer instead of a file
    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight')
    buffer.seek(0)
    img_base64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    plt.close()

    return img_base64


# ============================================================================
# API ENDPOINTS
# ============================================================================

@app.route('/api/status', methods=['GET'])
def get_status():
    """
    Return server status and statistics.

    Returns counts of active networks and training jobs that are
    currently in progress (status='pending' or 'training').
    """
    active_statuses = ('pending', 'training')
    active_training = sum(
        1 for job in training_jobs.values()
        if job.get('status') in active_statuses
    )

    return jsonify({
        'status': 'online',
        'active_networks': len(active_networks),
        'training_jobs': active_training,
        'mnist_model_loaded': mnist_classifier is not None,
        'mnist_test_data_loaded': test_data is not None
    }), 200


@app.route('/api/networks', methods=['POST'])
def create_network():
    """
    Create a new neural network.

    Request body:
        {
            'layers': [{'units': 3, 'activation': 'relu'},
                       {'units': 1, 'activation': 'sigmoid'}],
            'learning_rate': 0.01,      # optional
            'loss': 'mse',              # optional: mse | cross_entropy
            'optimizer': 'sgd',         # optional: sgd | adam
            'seed': 42                  # optional
        }

    Returns:
        JSON with network_id, layer summary and status
    """
    data = request.get_json(silent=True) or {}

    layers, error = parse_layers(data.get('layers'))
    if error:
        logger.warning(f"Invalid architecture requested: {data.get('layers')}")
        return jsonify({'error': error}), 400

    learning_rate = data.get('learning_rate', 0.01)
    loss = data.get('loss', 'mse')
    optimizer = data.get('optimizer', 'sgd')
    seed = data.get('seed')

    if not isinstance(learning_rate, (int, float)) or learning_rate <= 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400
    if loss not in LOSSES:
        return jsonify({'error': f'unknown loss: {loss}'}), 400
    if optimizer not in OPTIMIZERS:
        return jsonify({'error': f'unknown optimizer: {optimizer}'}), 400
    if seed is not None and not isinstance(seed, int):
        return jsonify({'error': 'seed must be an integer'}), 400

    network_id = str(uuid.uuid4())

    net = Network(float(learning_rate), LOSSES[loss], seed)
    for units, activation in layers:
        net.add_layer(units, activation)
    net.set_optimizer(OPTIMIZERS[optimizer])

    active_networks[network_id] = {
        'network': net,
        'trained': False,
        'busy': False,
        'loss': None
    }

    logger.info(f"Created network {network_id}: {net!r}")

    return jsonify({
        **network_summary(network_id, active_networks[network_id]),
        'status': 'created'
    }), 201


@app.route('/api/networks', methods=['GET'])
def list_networks():
    """List all networks currently in memory."""
    networks = [
        network_summary(nid, info) for nid, info in active_networks.items()
    ]
    return jsonify({'networks': networks}), 200


@app.route('/api/networks/<network_id>', methods=['GET'])
def get_network(network_id: str):
    if network_id not in active_networks:
        return jsonify({'error': 'Network not found'}), 404
    return jsonify(network_summary(network_id, active_networks[network_id])), 200


@app.route('/api/networks/<network_id>', methods=['DELETE'])
def delete_network_endpoint(network_id: str):
    """Delete a network from memory (saved model files are kept)."""
    info = active_networks.get(network_id)
    if info is None:
        logger.warning(f"Delete attempted for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404
    if info['busy']:
        return jsonify({'error': 'Network is training'}), 409

    del active_networks[network_id]
    logger.info(f"Deleted network {network_id}")
    return jsonify({'network_id': network_id, 'deleted': True}), 200


@app.route('/api/networks/<network_id>/train', methods=['POST'])
def train_network(network_id: str):
    """
    Start training a network in the background.

    Request body:
        {
            'inputs': [[...], ...],
            'targets': [[...], ...],
            'epochs': 1000,             # optional
            'report_every': 50          # optional
        }

    Returns:
        JSON with job_id, network_id, and status
    """
    info = active_networks.get(network_id)
    if info is None:
        logger.warning(f"Training requested for non-existent network: {network_id}")
        return jsonify({'error': 'Network not found'}), 404
    if info['busy']:
        return jsonify({'error': 'Network is already training'}), 409

    data = request.get_json(silent=True) or {}
    inputs = data.get('inputs')
    targets = data.get('targets')
    epochs = data.get('epochs', 1000)
    report_every = data.get('report_every', 50)

    if not isinstance(inputs, list) or not isinstance(targets, list) or not inputs:
        return jsonify({'error': 'inputs and targets must be non-empty lists'}), 400
    if len(inputs) != len(targets):
        return jsonify({'error': 'inputs and targets must have the same length'}), 400
    if not isinstance(epochs, int) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if not isinstance(report_every, int) or report_every < 1:
        return jsonify({'error': 'report_every must be a positive integer'}), 400

    job_id = str(uuid.uuid4())

    training_jobs[job_id] = {
        'network_id': network_id,
        'status': 'pending',
        'progress': 0,
        'epochs': epochs
    }
    info['busy'] = True

    logger.info(
        f"Created training job {job_id} for network {network_id}: "
        f"epochs={epochs}, samples={len(inputs)}"
    )

    # Run training in background so we can return immediately
    socketio.start_background_task(
        train_network_task,
        network_id, job_id, inputs, targets, epochs, report_every
    )

    return jsonify({
        'job_id': job_id,
        'network_id': network_id,
        'status': 'training_started'
    }), 202


def train_network_task(
    network_id: str,
    job_id: str,
    inputs: List[List[float]],
    targets: List[List[float]],
    epochs: int,
    report_every: int = 50
) -> None:
    """
    Background task that trains a network with train_batch once per epoch.

    Sends progress updates via WebSocket as training progresses.
    """
    info = active_networks.get(network_id)
    job = training_jobs.get(job_id)
    if info is None or job is None:
        logger.warning(f"Dropping training job {job_id}: network or job no longer exists")
        return

    net = info['network']

    try:
        logger.info(f"Starting training for job {job_id}")
        job['status'] = 'training'

        loss = None
        for epoch in range(1, epochs + 1):
            loss = net.train_batch(inputs, targets)

            if epoch % report_every == 0 or epoch == epochs:
                progress = (epoch / epochs) * 100
                job['progress'] = progress
                job['loss'] = loss

                socketio.emit('training_update', {
                    'job_id': job_id,
                    'network_id': network_id,
                    'epoch': epoch,
                    'total_epochs': epochs,
                    'loss': loss,
                    'progress': progress
                })

            # Let gevent serve other requests between epochs
            gevent.sleep(0)

        info['trained'] = True
        info['loss'] = loss

        job['status'] = 'completed'
        job['progress'] = 100

        logger.info(f"Training completed for job {job_id}: loss {loss:.6f}")

        socketio.emit('training_complete', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'completed',
            'loss': loss,
            'progress': 100
        })
        gevent.sleep(0)

    except Exception as e:
        if isinstance(e, NeuralNetworkError):
            logger.error(f"Training failed for job {job_id}: {e}")
        else:
            logger.exception(f"Training failed for job {job_id}: {e}")

        job['status'] = 'failed'
        job['error'] = str(e)

        socketio.emit('training_error', {
            'job_id': job_id,
            'network_id': network_id,
            'status': 'failed',
            'error': str(e)
        })
        gevent.sleep(0)

    finally:
        info['busy'] = False


@app.route('/api/training/<job_id>', methods=['GET'])
def get_training_status(job_id: str):
    """Get the current status of a training job."""
    if job_id in training_jobs:
        return jsonify(training_jobs[job_id]), 200

    logger.warning(f"Status requested for non-existent job: {job_id}")
    return jsonify({'error': 'Training job not found'}), 404


@app.route('/api/networks/<network_id>/predict', methods=['POST'])
def predict(network_id: str):
    """
    Run a forward pass.

    Request body:
        {'input': [...]}

    Returns:
        JSON with the output vector and the first layer's activations
    """
    info = active_networks.get(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404
    if info['busy']:
        return jsonify({'error': 'Network is training'}), 409

    data = request.get_json(silent=True) or {}
    network_input = data.get('input')
    if not isinstance(network_input, list) or not network_input:
        return jsonify({'error': 'input must be a non-empty list'}), 400

    net = info['network']
    try:
        hidden = net.get_hidden_layer_output(network_input)
        output = net.predict(network_input)
    except (NeuralNetworkError, ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400

    return jsonify({
        'network_id': network_id,
        'output': array_to_float_list(output),
        'hidden_output': array_to_float_list(hidden)
    }), 200


@app.route('/api/networks/<network_id>/save', methods=['POST'])
def save_network_endpoint(network_id: str):
    """Save a network to MODEL_DIR/<network_id>.bin."""
    info = active_networks.get(network_id)
    if info is None:
        return jsonify({'error': 'Network not found'}), 404
    if info['busy']:
        return jsonify({'error': 'Network is training'}), 409

    os.makedirs(MODEL_DIR, exist_ok=True)
    path = model_path(network_id)

    if not info['network'].save_model(path):
        return jsonify({'error': 'Failed to save network'}), 500

    return jsonify({'network_id': network_id, 'saved': True}), 200


@app.route('/api/networks/<network_id>/load', methods=['POST'])
def load_network_endpoint(network_id: str):
    """
    Load MODEL_DIR/<network_id>.bin into memory, replacing any in-memory
    network with the same id.
    """
    if not NETWORK_ID_PATTERN.match(network_id):
        return jsonify({'error': 'Invalid network id'}), 400

    info = active_networks.get(network_id)
    if info is not None and info['busy']:
        return jsonify({'error': 'Network is training'}), 409

    net = Network()
    if not net.load_model(model_path(network_id)):
        logger.warning(f"No loadable model for network {network_id}")
        return jsonify({'error': 'Saved network not found'}), 404

    active_networks[network_id] = {
        'network': net,
        'trained': True,
        'busy': False,
        'loss': None
    }
    logger.info(f"Loaded network {network_id}: {net!r}")

    return jsonify({
        **network_summary(network_id, active_networks[network_id]),
        'status': 'loaded'
    }), 200


# ============================================================================
# POINT CLASSIFIER ENDPOINTS
# ============================================================================

@app.route('/api/points/train', methods=['POST'])
def train_points():
    """
    Retrain the two-class point classifier in the background.

    Request body (all optional):
        {'epochs': 6000, 'learning_rate': 0.01}
    """
    global point_classifier

    if point_training['status'] == 'training':
        return jsonify({'error': 'Point classifier is already training'}), 409

    data = request.get_json(silent=True) or {}
    epochs = data.get('epochs', 6000)
    learning_rate = data.get('learning_rate', 0.01)

    if not isinstance(epochs, int) or epochs < 1:
        return jsonify({'error': 'epochs must be a positive integer'}), 400
    if not isinstance(learning_rate, (int, float)) or learning_rate <= 0:
        return jsonify({'error': 'learning_rate must be a positive number'}), 400

    point_classifier = PointClassifier(float(learning_rate), epochs)
    point_training.update({'status': 'training', 'epoch': 0, 'loss': None})

    socketio.start_background_task(train_points_task, point_classifier)

    return jsonify({'status': 'training_started', 'epochs': epochs}), 202


def train_points_task(classifier: PointClassifier) -> None:
    """Background task training the point classifier."""

    def on_progress(stats: Dict[str, Any]) -> None:
        point_training['epoch'] = stats['epoch']
        point_training['loss'] = stats['loss']
        socketio.emit('points_training_update', stats)
        gevent.sleep(0)

    try:
        loss = classifier.train(callback=on_progress)
        point_training['status'] = 'completed'
        socketio.emit('points_training_complete', {
            'status': 'completed',
            'loss': loss
        })
    except Exception as e:
        logger.exception(f"Point classifier training failed: {e}")
        point_training['status'] = 'failed'
        socketio.emit('points_training_error', {'error': str(e)})


@app.route('/api/points', methods=['GET'])
def get_points():
    """Training points and training status of the point classifier."""
    return jsonify({
        'points_a': [list(p) for p in point_classifier.points_a],
        'points_b': [list(p) for p in point_classifier.points_b],
        **point_training
    }), 200


@app.route('/api/points/predict', methods=['POST'])
def predict_point():
    """
    Classify a 2-D point.

    Request body:
        {'x': 1.3, 'y': 1.8}
    """
    if point_training['status'] == 'training':
        return jsonify({'error': 'Point classifier is training'}), 409
    if not point_classifier.initialized:
        return jsonify({'error': 'Point classifier has not been trained'}), 400

    data = request.get_json(silent=True) or {}
    x = data.get('x')
    y = data.get('y')
    if not isinstance(x, (int, float)) or not isinstance(y, (int, float)):
        return jsonify({'error': 'x and y must be numbers'}), 400

    return jsonify(point_classifier.predict(float(x), float(y))), 200


# ============================================================================
# MNIST ENDPOINTS
# ============================================================================

@app.route('/api/mnist/predict', methods=['POST'])
def predict_digit():
    """
    Recognise a digit.

    Request body:
        {'image': [784 floats in [0, 1]]}

    Returns:
        JSON with predicted digit, confidence and all class probabilities
    """
    if mnist_classifier is None:
        return jsonify({'error': 'MNIST model not loaded'}), 503

    data = request.get_json(silent=True) or {}
    image = data.get('image')
    if not isinstance(image, list) or len(image) != 784:
        return jsonify({'error': 'image must be a list of 784 numbers'}), 400

    try:
        probabilities = mnist_classifier.get_prediction_probabilities(image)
    except (NeuralNetworkError, ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400

    predicted_digit = int(np.argmax(probabilities))

    return jsonify({
        'predicted_digit': predicted_digit,
        'confidence': float(probabilities[predicted_digit]),
        'probabilities': array_to_float_list(probabilities)
    }), 200


@app.route('/api/mnist/example', methods=['GET'])
def get_mnist_example():
    """
    Classify a random test image and return it rendered as PNG.
    """
    if mnist_classifier is None:
        return jsonify({'error': 'MNIST model not loaded'}), 503
    if test_data is None or test_data.num_images == 0:
        logger.error("Test data not loaded")
        return jsonify({'error': 'Test data not available'}), 503

    index = int(np.random.randint(0, test_data.num_images))
    image = test_data.images[index]
    actual_digit = int(test_data.labels[index])

    probabilities = mnist_classifier.get_prediction_probabilities(image)
    predicted_digit = int(np.argmax(probabilities))

    return jsonify({
        'example_index': index,
        'predicted_digit': predicted_digit,
        'actual_digit': actual_digit,
        'image_data': create_digit_image(image, predicted_digit, actual_digit),
        'probabilities': array_to_float_list(probabilities)
    }), 200


# ============================================================================
# SERVER STARTUP
# ============================================================================

if __name__ == '__main__':
    # Check if running in cloud environment (Railway, etc.)
    is_cloud = bool(os.environ.get('RAILWAY_STATIC_URL') or os.environ.get('PORT'))
    port = int(os.environ.get('PORT', 8000))

    if is_cloud:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(
            app,
            host='0.0.0.0',
            port=port,
            debug=not is_cloud,
            use_reloader=False,
            allow_unsafe_werkzeug=True
        )
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            logger.info("You can use: pkill -f 'python -m bpnn.api_server'")
            sys.exit(1)
        else:
            raise
