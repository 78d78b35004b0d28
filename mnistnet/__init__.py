"""
mnistnet package
~~~~~~~~~~~~~~~~

Neural network implementation package for MNIST digit recognition.
Contains the dense matrix engine, the network training and inference
engine, the IDX data loader, binary model persistence, the training
command line and a read-only API server.
"""

__version__ = "1.0.0"
