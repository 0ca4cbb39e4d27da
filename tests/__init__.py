"""
Test Suite for the Deployment Orchestrator

Covers the orchestration core and its collaborators:
- versioning, config, models/state_store
- job_registry, jobs, triggers
- reconciler, identity_bootstrap, network_probe, version_feed
- main (HTTP surface)
"""
