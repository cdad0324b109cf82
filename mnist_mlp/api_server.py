"""
api_server.py
~~~~~~~~~~~~~

Flask-based REST API server with WebSocket support for training.

This module provides endpoints for:
- Creating a network and training it with real-time progress updates
- Checking and cancelling the training job
- Accuracy reports on the training and testing sets
- Saving and loading the network to/from files
- Walking through dataset samples with a rendered digit image

The server uses:
- Flask for REST API endpoints
- Flask-SocketIO for WebSocket communication
- Gevent as the async worker in production
- matplotlib (via ``reporting``) for digit images

``create_app`` builds the application around a ``Session``; there is no
module-level state.
"""

import os
import re
import math
import sys
import uuid
import logging
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException

from mnist_mlp.config import AppConfig, configure_logging
from mnist_mlp.errors import NoNetworkError, PersistenceError, TrainingCancelled
from mnist_mlp.matrix import Matrix
from mnist_mlp.model_persistence import FILE_EXTENSION, list_saved_networks
from mnist_mlp.reporting import create_digit_image
from mnist_mlp.session import DATASETS, Session

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ('pending', 'training')
FINISHED_STATUSES = ('completed', 'failed', 'cancelled')
NAME_PATTERN = re.compile(r'^[A-Za-z0-9_][A-Za-z0-9_.-]*$')


def array_to_float_list(matrix: Matrix) -> list:
    """Convert a matrix to a flat list of floats (for JSON serialization)."""
    return list(matrix.values())


def _positive_int(data: Dict[str, Any], key: str, default: Optional[int]) -> Optional[int]:
    value = data.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f'{key} must be a positive integer')
    return value


def create_app(session: Session, async_mode: Optional[str] = None) -> Tuple[Flask, SocketIO]:
    """
    Build the Flask app and its SocketIO server around a session.

    Args:
        session: Session holding the datasets and the current network
        async_mode: SocketIO async mode ('gevent' in production,
            'threading' for tests); auto-detected when None

    Returns:
        ``(app, socketio)``
    """
    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})  # Allow requests from any origin

    is_production = os.getenv('FLASK_ENV') == 'production'

    # SocketIO enables real-time communication (WebSockets) for training updates
    socketio = SocketIO(
        app,
        cors_allowed_origins="*",
        async_mode=async_mode,
        logger=not is_production,
        engineio_logger=not is_production,
        ping_timeout=60,
        ping_interval=25
    )

    # Training jobs being tracked: {job_id: job_info}
    training_jobs: Dict[str, Dict[str, Any]] = {}
    app.config['SESSION'] = session
    app.config['TRAINING_JOBS'] = training_jobs

    def active_job() -> Optional[str]:
        for job_id, job in training_jobs.items():
            if job['status'] in ACTIVE_STATUSES:
                return job_id
        return None

    def cleanup_finished_training_jobs() -> None:
        """Remove completed, failed or cancelled jobs from memory."""
        jobs_to_remove = [
            job_id for job_id, job in training_jobs.items()
            if job['status'] in FINISHED_STATUSES
        ]
        for job_id in jobs_to_remove:
            del training_jobs[job_id]
        if jobs_to_remove:
            logger.info(f"Cleaned up {len(jobs_to_remove)} finished training job(s)")

    def model_path(name: Any) -> str:
        if not isinstance(name, str) or not NAME_PATTERN.match(name):
            raise ValueError('name must be a simple file name (letters, digits, _ . -)')
        if not name.endswith(FILE_EXTENSION):
            name += FILE_EXTENSION
        return os.path.join(session.config.model_dir, name)

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.errorhandler(NoNetworkError)
    def handle_no_network(e: NoNetworkError):
        return jsonify({'error': str(e)}), 404

    @app.errorhandler(ValueError)
    def handle_value_error(e: ValueError):
        return jsonify({'error': str(e)}), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        if isinstance(e, HTTPException):
            return e
        logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    # ========================================================================
    # BACKGROUND TRAINING
    # ========================================================================

    def train_network_task(
        job_id: str,
        epochs: int,
        mini_batch_size: int,
        learning_rate: float
    ) -> None:
        """
        Background task that trains the session's network.

        Sends progress updates via WebSocket as training progresses.
        """
        job = training_jobs[job_id]
        net = session.require_network()

        def on_progress(data: Dict[str, Any]) -> None:
            """Called after each training epoch to send progress updates."""
            if data['phase'] == 'test':
                job['test_report'] = data['report'].to_dict()
                return

            progress = (data['epoch'] / data['total_epochs']) * 100
            job['status'] = 'training'
            job['progress'] = progress
            job['accuracy'] = data['accuracy']

            socketio.emit('training_update', {
                'job_id': job_id,
                'epoch': data['epoch'],
                'total_epochs': data['total_epochs'],
                'accuracy': data['accuracy'],
                'elapsed_time': data['elapsed_time'],
                'progress': progress,
                'correct': data['correct'],
                'total': data['total']
            })

            # Let the async worker send the message immediately
            socketio.sleep(0)

        try:
            logger.info(f"Starting training for job {job_id}")

            net.SGD(
                session.training_data,
                epochs,
                mini_batch_size,
                learning_rate,
                test_data=session.testing_data,
                callback=on_progress,
                yield_func=lambda: socketio.sleep(0),
                should_stop=lambda: job['cancel_requested']
            )

            job['status'] = 'completed'
            job['progress'] = 100
            test_report = job.get('test_report')
            test_accuracy = test_report['accuracy'] if test_report else None

            logger.info(f"Training completed for job {job_id}: test accuracy {test_accuracy}")

            socketio.emit('training_complete', {
                'job_id': job_id,
                'status': 'completed',
                'accuracy': test_accuracy,
                'progress': 100
            })

        except TrainingCancelled as e:
            logger.info(f"Training cancelled for job {job_id}: {e}")
            job['status'] = 'cancelled'
            socketio.emit('training_cancelled', {
                'job_id': job_id,
                'status': 'cancelled',
                'progress': job['progress']
            })

        except Exception as e:
            logger.exception(f"Training failed for job {job_id}: {e}")
            job['status'] = 'failed'
            job['error'] = str(e)
            socketio.emit('training_error', {
                'job_id': job_id,
                'status': 'failed',
                'error': str(e)
            })

        socketio.sleep(0)

    # ========================================================================
    # API ENDPOINTS
    # ========================================================================

    @app.route('/api/status', methods=['GET'])
    def get_status():
        """Return server status: datasets, current network, active job."""
        return jsonify({
            'status': 'online',
            'has_network': session.has_network,
            'trained': session.trained,
            'training_samples': len(session.training_data),
            'testing_samples': len(session.testing_data),
            'active_job': active_job()
        }), 200

    @app.route('/api/network', methods=['POST'])
    def create_network():
        """
        Create a new network and start training it in the background.

        Request body:
            {
                'num_layers': 2,          # not including the input layer
                'nodes_in_hl': 30,
                'epochs': 30,             # optional, defaults from config
                'mini_batch_size': 10,    # optional
                'learning_rate': 3.0      # optional
            }

        Returns:
            JSON with job_id, architecture and status
        """
        running = active_job()
        if running is not None:
            return jsonify({'error': 'A training job is already running', 'job_id': running}), 409
        if not session.training_data:
            return jsonify({'error': 'Training data not available'}), 500

        data = request.get_json(silent=True) or {}
        defaults = session.config.training

        num_layers = _positive_int(data, 'num_layers', None)
        if num_layers is None:
            return jsonify({'error': 'num_layers is required'}), 400
        nodes_in_hl = 0
        if num_layers > 1:
            nodes_in_hl = _positive_int(data, 'nodes_in_hl', None)
            if nodes_in_hl is None:
                return jsonify({'error': 'nodes_in_hl is required when there are hidden layers'}), 400
        epochs = _positive_int(data, 'epochs', defaults.epochs)
        mini_batch_size = _positive_int(data, 'mini_batch_size', defaults.batch_size)
        learning_rate = data.get('learning_rate', defaults.learning_rate)
        if (isinstance(learning_rate, bool) or not isinstance(learning_rate, (int, float))
                or not math.isfinite(learning_rate) or learning_rate <= 0):
            return jsonify({'error': 'learning_rate must be a positive number'}), 400

        net = session.new_network(num_layers, nodes_in_hl)
        session.network = net

        cleanup_finished_training_jobs()
        job_id = str(uuid.uuid4())
        training_jobs[job_id] = {
            'job_id': job_id,
            'status': 'pending',
            'progress': 0,
            'epochs': epochs,
            'architecture': net.sizes,
            'cancel_requested': False
        }

        logger.info(
            f"Created training job {job_id} for network {net.sizes}: "
            f"epochs={epochs}, batch_size={mini_batch_size}, lr={learning_rate}"
        )

        # Run training in background so we can return immediately
        socketio.start_background_task(
            train_network_task, job_id, epochs, mini_batch_size, float(learning_rate)
        )

        return jsonify({
            'job_id': job_id,
            'architecture': net.sizes,
            'status': 'training_started'
        }), 202

    @app.route('/api/training/<job_id>', methods=['GET'])
    def get_training_status(job_id: str):
        """Get the current status of a training job."""
        if job_id not in training_jobs:
            logger.warning(f"Status requested for non-existent job: {job_id}")
            return jsonify({'error': 'Training job not found'}), 404
        return jsonify(training_jobs[job_id]), 200

    @app.route('/api/training/<job_id>/cancel', methods=['POST'])
    def cancel_training(job_id: str):
        """Ask a running job to stop at the next mini-batch boundary."""
        job = training_jobs.get(job_id)
        if job is None:
            return jsonify({'error': 'Training job not found'}), 404
        if job['status'] not in ACTIVE_STATUSES:
            return jsonify({'error': f"Training job is already {job['status']}"}), 409

        job['cancel_requested'] = True
        logger.info(f"Cancellation requested for job {job_id}")
        return jsonify({'job_id': job_id, 'status': 'cancelling'}), 202

    @app.route('/api/network', methods=['GET'])
    def get_network():
        """Metadata of the current network."""
        return jsonify(session.describe()), 200

    @app.route('/api/network/accuracy', methods=['GET'])
    def get_accuracy():
        """Per-class and overall accuracy on ?dataset=training|testing."""
        dataset = request.args.get('dataset', 'testing')
        if dataset not in DATASETS:
            return jsonify({'error': f'dataset must be one of {list(DATASETS)}'}), 400
        report = session.accuracy(dataset)
        return jsonify({'dataset': dataset, **report.to_dict()}), 200

    @app.route('/api/network/save', methods=['POST'])
    def save_network_endpoint():
        """Save the current network as {'name': ...} in the model directory."""
        if active_job() is not None:
            return jsonify({'error': 'Cannot save while training is running'}), 409

        data = request.get_json(silent=True) or {}
        path = model_path(data.get('name'))
        try:
            session.save(path)
        except PersistenceError as e:
            logger.error(f"Error saving network to {path}: {e}")
            return jsonify({'error': str(e)}), 500

        return jsonify({'name': data['name'], 'path': path, 'status': 'saved'}), 201

    @app.route('/api/network/load', methods=['POST'])
    def load_network_endpoint():
        """Replace the current network with the saved network {'name': ...}."""
        if active_job() is not None:
            return jsonify({'error': 'Cannot load while training is running'}), 409

        data = request.get_json(silent=True) or {}
        path = model_path(data.get('name'))
        if not os.path.exists(path):
            return jsonify({'error': 'Saved network not found'}), 404

        try:
            net = session.load(path)
        except PersistenceError as e:
            logger.warning(f"Rejected network file {path}: {e}")
            return jsonify({'error': str(e)}), 400

        return jsonify({'name': data['name'], 'architecture': net.sizes, 'status': 'loaded'}), 200

    @app.route('/api/networks/saved', methods=['GET'])
    def list_networks():
        """List networks saved in the model directory."""
        networks = list_saved_networks(session.config.model_dir)
        return jsonify({'networks': networks}), 200

    @app.route('/api/network/examples/<dataset>/<int:index>', methods=['GET'])
    def get_example(dataset: str, index: int):
        """
        The first sample at or after ``index``, with image and prediction.

        Query string ``only_missed=true`` skips correctly classified samples.
        """
        if dataset not in DATASETS:
            return jsonify({'error': f'dataset must be one of {list(DATASETS)}'}), 400
        only_missed = request.args.get('only_missed', 'false').lower() in ('1', 'true', 'yes')

        net = session.require_network()
        view = next(session.samples(dataset, only_missed=only_missed, start=index), None)
        if view is None:
            return jsonify({'error': 'No more samples'}), 404

        return jsonify({
            'dataset': dataset,
            'example_index': view.index,
            'next_index': view.index + 1,
            'predicted_digit': view.predicted,
            'actual_digit': view.actual,
            'correct': view.correct,
            'image_data': create_digit_image(view.sample.x, view.predicted, view.actual),
            'network_output': array_to_float_list(net.predict(view.sample.x))
        }), 200

    return app, socketio


# ============================================================================
# SERVER STARTUP
# ============================================================================

def main() -> None:
    configure_logging()

    config = AppConfig.from_env()
    session = Session.from_config(config)
    app, socketio = create_app(session, async_mode='gevent')

    # Check if running in cloud environment (Railway, etc.)
    is_cloud = bool(os.environ.get('RAILWAY_STATIC_URL') or os.environ.get('PORT'))
    port = int(os.environ.get('PORT', 8000))

    if is_cloud:
        logger.info(f"Starting server in production mode on port {port}")
    else:
        logger.info(f"Starting server at http://localhost:{port}/")

    try:
        socketio.run(app, host='0.0.0.0', port=port)
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(f"Port {port} is already in use.")
            sys.exit(1)
        else:
            raise


if __name__ == '__main__':
    main()
