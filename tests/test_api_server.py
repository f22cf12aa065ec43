"""
test_api_server.py
~~~~~~~~~~~~~~~~~~

Integration tests for the REST API.

Background tasks are captured instead of being spawned so each test can run
them synchronously.
"""

import base64
import os
import sys

import numpy as np
import pytest

# Add repository root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bpnn import api_server
from bpnn.classifier import MNISTClassifier, PointClassifier
from bpnn.mnist_loader import MNISTData


class TaskRecorder:
    """Stand-in for socketio.start_background_task."""

    def __init__(self):
        self.calls = []

    def __call__(self, target, *args, **kwargs):
        self.calls.append((target, args, kwargs))

    def run_all(self):
        calls, self.calls = self.calls, []
        for target, args, kwargs in calls:
            target(*args, **kwargs)


@pytest.fixture
def tasks(monkeypatch):
    recorder = TaskRecorder()
    monkeypatch.setattr(api_server.socketio, 'start_background_task', recorder)
    return recorder


@pytest.fixture
def client(tmp_path, monkeypatch, tasks):
    """Test client with empty server state and a temporary model directory."""
    monkeypatch.setattr(api_server, 'MODEL_DIR', str(tmp_path / "models"))
    monkeypatch.setattr(api_server, 'active_networks', {})
    monkeypatch.setattr(api_server, 'training_jobs', {})
    monkeypatch.setattr(api_server, 'point_classifier', PointClassifier())
    monkeypatch.setattr(api_server, 'point_training',
                        {'status': 'idle', 'epoch': 0, 'loss': None})
    monkeypatch.setattr(api_server, 'mnist_classifier', None)
    monkeypatch.setattr(api_server, 'test_data', None)

    api_server.app.config['TESTING'] = True
    with api_server.app.test_client() as test_client:
        yield test_client


def create_network(client, **overrides):
    body = {
        'layers': [{'units': 3, 'activation': 'relu'},
                   {'units': 1, 'activation': 'sigmoid'}],
        'learning_rate': 0.1,
        'seed': 3
    }
    body.update(overrides)
    response = client.post('/api/networks', json=body)
    assert response.status_code == 201
    return response.get_json()['network_id']


XOR_LIKE_INPUTS = [[0.0, 1.0], [1.0, 0.0], [1.0, 1.0], [0.0, 0.0]]
XOR_LIKE_TARGETS = [[1.0], [1.0], [0.0], [0.0]]


@pytest.mark.integration
class TestNetworkEndpoints:
    """Test creating, inspecting and deleting networks."""

    def test_status(self, client):
        response = client.get('/api/status')
        data = response.get_json()
        assert response.status_code == 200
        assert data['status'] == 'online'
        assert data['active_networks'] == 0
        assert data['mnist_model_loaded'] is False

    def test_create_network(self, client):
        response = client.post('/api/networks', json={
            'layers': [{'units': 4, 'activation': 'relu'},
                       {'units': 2, 'activation': 'softmax'}],
            'loss': 'cross_entropy',
            'optimizer': 'adam'
        })
        data = response.get_json()

        assert response.status_code == 201
        assert data['status'] == 'created'
        assert data['loss_type'] == 'CROSS_ENTROPY'
        assert data['optimizer'] == 'ADAM'
        assert data['num_layers'] == 2
        assert data['network_id'] in api_server.active_networks

    @pytest.mark.parametrize("body", [
        {},
        {'layers': []},
        {'layers': [{'units': 0}]},
        {'layers': [{'units': 2, 'activation': 'tanh'}]},
        {'layers': [{'units': 2}], 'loss': 'hinge'},
        {'layers': [{'units': 2}], 'optimizer': 'rmsprop'},
        {'layers': [{'units': 2}], 'learning_rate': -1},
    ])
    def test_create_network_validation(self, client, body):
        response = client.post('/api/networks', json=body)
        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_list_and_get(self, client):
        network_id = create_network(client)

        listed = client.get('/api/networks').get_json()['networks']
        assert [n['network_id'] for n in listed] == [network_id]

        response = client.get(f'/api/networks/{network_id}')
        assert response.status_code == 200
        assert response.get_json()['trained'] is False

    def test_unknown_network(self, client):
        assert client.get('/api/networks/nope').status_code == 404
        assert client.delete('/api/networks/nope').status_code == 404
        assert client.post('/api/networks/nope/predict',
                           json={'input': [1.0]}).status_code == 404

    def test_delete(self, client):
        network_id = create_network(client)
        response = client.delete(f'/api/networks/{network_id}')
        assert response.status_code == 200
        assert network_id not in api_server.active_networks


@pytest.mark.integration
class TestTrainingEndpoints:
    """Test background training jobs."""

    def test_train_network(self, client, tasks):
        network_id = create_network(client)

        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': XOR_LIKE_INPUTS,
            'targets': XOR_LIKE_TARGETS,
            'epochs': 20,
            'report_every': 5
        })
        assert response.status_code == 202
        job_id = response.get_json()['job_id']
        assert api_server.training_jobs[job_id]['status'] == 'pending'
        assert len(tasks.calls) == 1

        tasks.run_all()

        job = client.get(f'/api/training/{job_id}').get_json()
        assert job['status'] == 'completed'
        assert job['progress'] == 100
        info = api_server.active_networks[network_id]
        assert info['trained'] is True
        assert info['busy'] is False
        assert info['loss'] == job['loss']

    def test_busy_network_rejects_requests(self, client, tasks):
        network_id = create_network(client)
        body = {'inputs': XOR_LIKE_INPUTS, 'targets': XOR_LIKE_TARGETS,
                'epochs': 5}
        client.post(f'/api/networks/{network_id}/train', json=body)

        assert client.post(f'/api/networks/{network_id}/train',
                           json=body).status_code == 409
        assert client.post(f'/api/networks/{network_id}/predict',
                           json={'input': [1.0, 0.0]}).status_code == 409
        assert client.delete(f'/api/networks/{network_id}').status_code == 409

        tasks.run_all()
        assert client.post(f'/api/networks/{network_id}/predict',
                           json={'input': [1.0, 0.0]}).status_code == 200

    @pytest.mark.parametrize("body", [
        {'inputs': [], 'targets': []},
        {'inputs': [[1.0, 0.0]], 'targets': [[1.0], [0.0]]},
        {'inputs': [[1.0, 0.0]], 'targets': [[1.0]], 'epochs': 0},
        {'inputs': [[1.0, 0.0]], 'targets': [[1.0]], 'report_every': 'x'},
    ])
    def test_train_validation(self, client, body):
        network_id = create_network(client)
        response = client.post(f'/api/networks/{network_id}/train', json=body)
        assert response.status_code == 400
        assert api_server.active_networks[network_id]['busy'] is False

    def test_failed_training_job(self, client, tasks):
        network_id = create_network(client)
        client.post(f'/api/networks/{network_id}/predict',
                    json={'input': [1.0, 0.0]})

        response = client.post(f'/api/networks/{network_id}/train', json={
            'inputs': [[1.0, 2.0, 3.0]],
            'targets': [[1.0]],
            'epochs': 3
        })
        job_id = response.get_json()['job_id']
        tasks.run_all()

        job = api_server.training_jobs[job_id]
        assert job['status'] == 'failed'
        assert 'error' in job
        assert api_server.active_networks[network_id]['busy'] is False

    def test_unknown_job(self, client):
        assert client.get('/api/training/missing').status_code == 404


@pytest.mark.integration
class TestPredictAndPersistence:
    """Test predictions and model files."""

    def test_predict(self, client):
        network_id = create_network(client)
        response = client.post(f'/api/networks/{network_id}/predict',
                               json={'input': [0.5, -0.5]})
        data = response.get_json()

        assert response.status_code == 200
        assert len(data['output']) == 1
        assert len(data['hidden_output']) == 3

    def test_predict_wrong_width(self, client):
        network_id = create_network(client)
        client.post(f'/api/networks/{network_id}/predict',
                    json={'input': [0.5, -0.5]})
        response = client.post(f'/api/networks/{network_id}/predict',
                               json={'input': [0.5, -0.5, 1.0]})
        assert response.status_code == 400

    def test_predict_requires_input(self, client):
        network_id = create_network(client)
        response = client.post(f'/api/networks/{network_id}/predict', json={})
        assert response.status_code == 400

    def test_predict_rejects_non_numeric_input(self, client):
        network_id = create_network(client)
        response = client.post(f'/api/networks/{network_id}/predict',
                               json={'input': ['a', 'b']})
        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_save_and_load(self, client):
        network_id = create_network(client)
        x = {'input': [0.25, 0.75]}
        before = client.post(f'/api/networks/{network_id}/predict',
                             json=x).get_json()['output']

        response = client.post(f'/api/networks/{network_id}/save')
        assert response.status_code == 200
        assert os.path.exists(api_server.model_path(network_id))

        client.delete(f'/api/networks/{network_id}')
        response = client.post(f'/api/networks/{network_id}/load')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'loaded'
        assert response.get_json()['sizes'] == [2, 3, 1]

        after = client.post(f'/api/networks/{network_id}/predict',
                            json=x).get_json()['output']
        assert after == before

    def test_load_missing_model(self, client):
        assert client.post('/api/networks/never-saved/load').status_code == 404

    def test_load_rejects_unsafe_id(self, client):
        assert client.post('/api/networks/bad.id/load').status_code == 400


@pytest.mark.integration
class TestPointEndpoints:
    """Test the point classifier demo."""

    def test_points(self, client):
        data = client.get('/api/points').get_json()
        assert len(data['points_a']) == 9
        assert len(data['points_b']) == 6
        assert data['status'] == 'idle'

    def test_predict_before_training(self, client):
        response = client.post('/api/points/predict', json={'x': 1.3, 'y': 1.8})
        assert response.status_code == 400

    def test_train_then_predict(self, client, tasks):
        response = client.post('/api/points/train', json={'epochs': 30})
        assert response.status_code == 202

        busy = client.post('/api/points/predict', json={'x': 1.3, 'y': 1.8})
        assert busy.status_code == 409

        tasks.run_all()
        assert api_server.point_training['status'] == 'completed'
        assert api_server.point_training['epoch'] == 30

        response = client.post('/api/points/predict', json={'x': 1.3, 'y': 1.8})
        data = response.get_json()
        assert response.status_code == 200
        assert data['predicted_class'] in ('A', 'B')
        assert len(data['hidden_values']) == 3

    def test_predict_requires_numbers(self, client, tasks):
        client.post('/api/points/train', json={'epochs': 5})
        tasks.run_all()
        response = client.post('/api/points/predict', json={'x': 'a', 'y': 1})
        assert response.status_code == 400

    def test_train_validation(self, client):
        response = client.post('/api/points/train', json={'epochs': -5})
        assert response.status_code == 400


@pytest.mark.integration
class TestMnistEndpoints:
    """Test digit recognition endpoints."""

    @pytest.fixture
    def loaded_classifier(self, monkeypatch):
        classifier = MNISTClassifier(seed=0)
        classifier.build_network()
        monkeypatch.setattr(api_server, 'mnist_classifier', classifier)
        return classifier

    def test_predict_without_model(self, client):
        response = client.post('/api/mnist/predict', json={'image': [0.0] * 784})
        assert response.status_code == 503

    def test_predict_digit(self, client, loaded_classifier):
        response = client.post('/api/mnist/predict', json={'image': [0.2] * 784})
        data = response.get_json()

        assert response.status_code == 200
        assert 0 <= data['predicted_digit'] <= 9
        assert len(data['probabilities']) == 10
        assert data['confidence'] == max(data['probabilities'])

    def test_predict_wrong_size(self, client, loaded_classifier):
        response = client.post('/api/mnist/predict', json={'image': [0.2] * 10})
        assert response.status_code == 400

    def test_example_without_test_data(self, client, loaded_classifier):
        assert client.get('/api/mnist/example').status_code == 503

    def test_example(self, client, loaded_classifier, monkeypatch):
        images = np.zeros((2, 784))
        images[1, 300:400] = 1.0
        monkeypatch.setattr(api_server, 'test_data', MNISTData(
            images=images, labels=np.array([0, 1]),
            image_rows=28, image_cols=28
        ))

        response = client.get('/api/mnist/example')
        data = response.get_json()

        assert response.status_code == 200
        assert data['actual_digit'] == data['example_index']
        assert base64.b64decode(data['image_data']).startswith(b'\x89PNG')


@pytest.mark.unit
def test_create_digit_image():
    encoded = api_server.create_digit_image(np.linspace(0, 1, 784), 3, 5)
    assert base64.b64decode(encoded)[:8] == b'\x89PNG\r\n\x1a\n'
