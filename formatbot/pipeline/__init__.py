"""Pipeline modules.

The controller chains trigger evaluation, provisioning, normalization and
publishing into one sequential run and records its state in a PipelineRun.
"""
