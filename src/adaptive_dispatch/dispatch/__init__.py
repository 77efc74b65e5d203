"""Learned task dispatch: pick an executor, validate its answer, retry or give up.

Selection is nearest-neighbour statistics over past attempts, not a trained
model. Each attempt is embedded into a fixed 14-dimension feature vector and
stored in a size-bounded SQLite history; new tasks go to the executor that
did best on the most similar, most recent tasks. Until enough history exists
a deterministic rule-based scorer over the declared executor profiles decides.
"""
