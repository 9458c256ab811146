"""Execution engine for compiled workflow plans.

The coordinator drives a compiled graph to completion: the resolver picks the
activities whose dependencies are satisfied (conditions are plain substring
checks on upstream outputs), a bounded worker pool dispatches them to the
injected capabilities, and the aggregator derives the final outcome.
"""
