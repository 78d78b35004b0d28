"""
network.py
~~~~~~~~~~

A fully-connected feedforward network trained with mini-batch stochastic
gradient descent. Every layer uses the sigmoid activation, training
minimizes the quadratic cost and gradients are computed by
backpropagation.

Layer transitions are indexed ``0 .. L-2``: ``weights[l]`` and
``biases[l]`` map the activations of layer ``l`` to the pre-activations
of layer ``l + 1``.
"""

import logging
import math
import random
import time
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

from .arena import MatrixArena
from .errors import ShapeMismatch
from .matrix import DEFAULT_TYPECODE, Matrix, matmul
from .sample import Sample

# Configure module logger
logger = logging.getLogger(__name__)

EpochCallback = Callable[[Dict[str, Any]], None]


def sigmoid(x: float) -> float:
    """The logistic function ``1 / (1 + e^-x)``."""
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    # exp(-x) overflows for large negative x
    e = math.exp(x)
    return e / (1.0 + e)


def sigmoid_prime(x: float) -> float:
    """Derivative of the sigmoid function."""
    s = sigmoid(x)
    return s * (1.0 - s)


def guess_index(output: Matrix) -> int:
    """
    Return the index of the largest output component.

    Ties go to the lowest index.

    Raises:
        ValueError: If ``output`` is empty
    """
    if output.size == 0:
        raise ValueError("Cannot classify an empty output vector")

    best_index = 0
    best_value = output.data[0]
    for i, value in enumerate(output.data):
        if value > best_value:
            best_index, best_value = i, value
    return best_index


class ValidationResult(NamedTuple):
    """Outcome of running the network over a labeled data set."""

    correct: int
    total: int

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0


class Network:
    """
    Sigmoid multilayer perceptron.

    Attributes:
        sizes: Number of neurons in each layer, input layer first
        num_layers: ``len(sizes)``
        weights: ``weights[l]`` is a ``sizes[l+1] x sizes[l]`` matrix
        biases: ``biases[l]`` is a ``sizes[l+1] x 1`` column vector
    """

    def __init__(
        self,
        sizes: Sequence[int],
        weights: Sequence[Matrix],
        biases: Sequence[Matrix]
    ):
        """
        Wrap existing parameters.

        Use ``Network.initialize`` for a randomly initialized network.

        Raises:
            ValueError: If there are fewer than two layers or a layer is empty
            ShapeMismatch: If a weight or bias does not fit the layer sizes
        """
        if len(sizes) < 2:
            raise ValueError(
                f"A network needs at least 2 layers, got {len(sizes)}"
            )
        if any(size < 1 for size in sizes):
            raise ValueError(f"Layer sizes must be positive, got {list(sizes)}")
        if len(weights) != len(sizes) - 1 or len(biases) != len(sizes) - 1:
            raise ShapeMismatch(
                f"{len(sizes)} layers need {len(sizes) - 1} weight and bias "
                f"matrices, got {len(weights)} and {len(biases)}"
            )

        for i, (w, b) in enumerate(zip(weights, biases)):
            if w.shape != (sizes[i + 1], sizes[i]):
                raise ShapeMismatch(
                    f"weights[{i}] is {w.rows}x{w.cols}, expected "
                    f"{sizes[i + 1]}x{sizes[i]}"
                )
            if b.shape != (sizes[i + 1], 1):
                raise ShapeMismatch(
                    f"biases[{i}] is {b.rows}x{b.cols}, expected "
                    f"{sizes[i + 1]}x1"
                )

        self.sizes = list(sizes)
        self.num_layers = len(sizes)
        self.weights = list(weights)
        self.biases = list(biases)

    @classmethod
    def initialize(
        cls,
        sizes: Sequence[int],
        rng: random.Random,
        typecode: str = DEFAULT_TYPECODE
    ) -> 'Network':
        """
        Create a network with every parameter drawn from N(0, 1).

        Layers are filled in order, all weights of a layer before its
        biases, so a given seed always yields the same network.

        Args:
            sizes: Layer widths, e.g. ``[784, 16, 16, 10]``
            rng: Source of randomness
            typecode: Element type of the parameters

        Returns:
            Network: The new network
        """
        if len(sizes) < 2 or any(size < 1 for size in sizes):
            raise ValueError(f"Invalid layer sizes {list(sizes)}")

        weights = []
        biases = []
        for n_in, n_out in zip(sizes[:-1], sizes[1:]):
            weights.append(Matrix(
                n_out, n_in, typecode,
                data=[rng.gauss(0.0, 1.0) for _ in range(n_out * n_in)]
            ))
            biases.append(Matrix(
                n_out, 1, typecode,
                data=[rng.gauss(0.0, 1.0) for _ in range(n_out)]
            ))

        logger.info(f"Initialized network with architecture {list(sizes)}")
        return cls(sizes, weights, biases)

    def __repr__(self) -> str:
        return f"Network({self.sizes})"

    # ------------------------------------------------------------------
    # Forward pass
    # ------------------------------------------------------------------

    def _check_input(self, inputs: Matrix) -> None:
        if inputs.shape != (self.sizes[0], 1):
            raise ShapeMismatch(
                f"Input is {inputs.rows}x{inputs.cols}, expected "
                f"{self.sizes[0]}x1"
            )

    def feedforward(
        self,
        inputs: Matrix,
        arena: Optional[MatrixArena] = None
    ) -> Matrix:
        """
        Return the output of the network for the column vector ``inputs``.

        All intermediate matrices, and the output, are allocated in
        ``arena`` when one is given.
        """
        self._check_input(inputs)
        a = inputs
        for w, b in zip(self.weights, self.biases):
            z = matmul(w, a, arena).add(b)
            a = z.map(sigmoid, arena=arena)
        return a

    def feed(self, sample: Sample) -> Matrix:
        """
        Run ``sample`` through the network.

        Returns:
            Matrix: Output column vector owned by the caller
        """
        with MatrixArena('feed') as arena:
            output = self.feedforward(sample.to_input(arena), arena)
            return output.clone()

    def predict(self, sample: Sample) -> int:
        """Return the class the network assigns to ``sample``."""
        return guess_index(self.feed(sample))

    def _forward_retained(
        self,
        inputs: Matrix,
        arena: Optional[MatrixArena]
    ) -> Tuple[List[Matrix], List[Matrix]]:
        """
        Forward pass that keeps every intermediate result.

        Returns:
            (activations, zs) where ``activations[0]`` is the input,
            ``zs[l]`` is the pre-activation produced by transition ``l``
            and ``activations[l + 1] == sigmoid(zs[l])``
        """
        self._check_input(inputs)
        activations = [inputs]
        zs = []
        for w, b in zip(self.weights, self.biases):
            z = matmul(w, activations[-1], arena).add(b)
            zs.append(z)
            activations.append(z.map(sigmoid, arena=arena))
        return activations, zs

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def backprop(
        self,
        sample: Sample,
        arena: Optional[MatrixArena] = None
    ) -> Tuple[List[Matrix], List[Matrix]]:
        """
        Compute the gradient of the cost for a single sample.

        The gradient is that of ``0.5 * sum((a - y) ** 2)``, which is what
        the output error ``(a - y) * sigmoid'(z)`` corresponds to.

        Args:
            sample: Training example
            arena: Arena owning every matrix created here

        Returns:
            (nabla_b, nabla_w), shaped like ``biases`` and ``weights``
        """
        activations, zs = self._forward_retained(sample.to_input(arena), arena)
        target = sample.to_target(arena)

        last = self.num_layers - 2
        nabla_b: List[Optional[Matrix]] = [None] * (last + 1)
        nabla_w: List[Optional[Matrix]] = [None] * (last + 1)

        delta = None
        for layer in range(last, -1, -1):
            if layer == last:
                # Output error: a - y
                error = activations[-1].clone(arena).sub(target)
            else:
                # Error carried back through the weights of transition layer + 1
                error = matmul(self.weights[layer + 1].transpose(arena), delta, arena)
            delta = error.mul_elem(zs[layer].map(sigmoid_prime, arena=arena))

            nabla_b[layer] = delta
            nabla_w[layer] = matmul(delta, activations[layer].transpose(arena), arena)

        return nabla_b, nabla_w

    def train_batch(self, batch: Sequence[Sample], eta: float) -> None:
        """
        Apply one gradient descent step using the samples in ``batch``.

        Gradients of all samples are summed, scaled by
        ``eta / len(batch)`` and only then subtracted from the
        parameters, so the network is never left half updated.

        Raises:
            ValueError: If ``batch`` is empty
        """
        if len(batch) == 0:
            raise ValueError("Cannot train on an empty batch")

        with MatrixArena('batch') as arena:
            nabla_w = [arena.zeros(w.rows, w.cols, w.typecode) for w in self.weights]
            nabla_b = [arena.zeros(b.rows, b.cols, b.typecode) for b in self.biases]

            for sample in batch:
                delta_nabla_b, delta_nabla_w = self.backprop(sample, arena)
                for nb, dnb in zip(nabla_b, delta_nabla_b):
                    nb.add(dnb)
                for nw, dnw in zip(nabla_w, delta_nabla_w):
                    nw.add(dnw)

            scale = eta / len(batch)
            for nw in nabla_w:
                nw.mul_scalar(scale)
            for nb in nabla_b:
                nb.mul_scalar(scale)

            for w, nw in zip(self.weights, nabla_w):
                w.sub(nw)
            for b, nb in zip(self.biases, nabla_b):
                b.sub(nb)

    def sgd(
        self,
        samples: Sequence[Sample],
        epochs: int,
        batch_size: int,
        eta: float,
        rng: random.Random,
        callback: Optional[EpochCallback] = None
    ) -> List[Dict[str, Any]]:
        """
        Train the network using mini-batch stochastic gradient descent.

        Each epoch shuffles the samples, trains on the first five sixths in
        consecutive batches of ``batch_size`` and scores the network on the
        remaining sixth. When the training part is not a multiple of
        ``batch_size``, the leftover samples form one smaller final batch.

        Args:
            samples: Labeled training samples (not modified)
            epochs: Number of passes over the data
            batch_size: Samples per gradient step
            eta: Learning rate
            rng: Source of randomness for shuffling
            callback: Called with the epoch result after every epoch

        Returns:
            list: One result dict per epoch with keys ``epoch``,
            ``total_epochs``, ``correct``, ``total``, ``accuracy``,
            ``cost`` and ``elapsed_time``
        """
        if epochs < 0:
            raise ValueError(f"epochs must be non-negative, got {epochs}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if eta <= 0:
            raise ValueError(f"eta must be positive, got {eta}")

        data = list(samples)
        training_size = 5 * len(data) // 6
        n_batches = math.ceil(training_size / batch_size)

        logger.info(
            f"Training {self.sizes} on {training_size} samples, "
            f"evaluating on {len(data) - training_size}: epochs={epochs}, "
            f"batch_size={batch_size}, eta={eta}"
        )

        history = []
        for epoch in range(epochs):
            started = time.time()
            rng.shuffle(data)

            for k, start in enumerate(range(0, training_size, batch_size)):
                logger.debug(f"Processing batch {k + 1}/{n_batches}...")
                end = min(start + batch_size, training_size)
                self.train_batch(data[start:end], eta)

            eval_data = data[training_size:]
            correct, cost_sum = self._score(eval_data)
            total = len(eval_data)

            result = {
                'epoch': epoch + 1,
                'total_epochs': epochs,
                'correct': correct,
                'total': total,
                'accuracy': correct / total if total else 0.0,
                'cost': cost_sum / total if total else 0.0,
                'elapsed_time': time.time() - started
            }
            history.append(result)

            logger.info(
                f"Epoch {epoch + 1}/{epochs}: {correct}/{total} correct "
                f"({result['accuracy']:.2%}), cost {result['cost']:.4f}, "
                f"{result['elapsed_time']:.1f}s"
            )
            if callback is not None:
                callback(result)

        return history

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _score(self, samples: Sequence[Sample]) -> Tuple[int, float]:
        """Return (number correct, summed cost) over ``samples``."""
        correct = 0
        cost_sum = 0.0
        for sample in samples:
            output = self.feed(sample)
            if guess_index(output) == sample.label:
                correct += 1
            cost_sum += sample.cost(output)
        return correct, cost_sum

    def evaluate(self, samples: Sequence[Sample]) -> int:
        """Return the number of samples the network classifies correctly."""
        return sum(
            1 for sample in samples if self.predict(sample) == sample.label
        )

    def total_cost(self, samples: Sequence[Sample]) -> float:
        """Mean quadratic cost over ``samples`` (0.0 when empty)."""
        if len(samples) == 0:
            return 0.0
        return self._score(samples)[1] / len(samples)

    def validate(self, samples: Sequence[Sample]) -> ValidationResult:
        """
        Run the network over ``samples`` without training.

        Returns:
            ValidationResult: Number correct and number of samples
        """
        logger.info("Running network on test data...")
        result = ValidationResult(self.evaluate(samples), len(samples))
        logger.debug(
            f"Result: {result.correct} / {result.total} "
            f"({result.accuracy:.2%})"
        )
        return result
