"""Application layer.

This layer wires the job store, task registry and resume supervisor together and
holds the use cases that trigger multi-phase batch work.

Rule of thumb:
UI -> application.use_cases -> core.jobs
"""
