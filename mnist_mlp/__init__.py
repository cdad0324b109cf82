"""
mnist_mlp package
~~~~~~~~~~~~~~~~~

Neural network implementation package for MNIST digit recognition.
Contains the matrix layer, the sigmoid network and its training loop,
CSV data loading, model persistence, the interactive menu and the API
server.
"""

__version__ = "1.0.0"
