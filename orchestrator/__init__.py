# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Graph traversal, awaiting and commands
# PURPOSE: Resolve alveoli graphs and drive apply / delete
# ============================================================================
"""
Orchestrator Module

- engine: substitution, conditions, templates, patches
- resolver: alveolus graph traversal
- awaiter: readiness polling
- driver: apply / delete commands

Submodules are imported explicitly (services import the engine, the
resolver imports services).

Usage:
    from orchestrator.driver import create_driver

    driver = create_driver(kube)
    await driver.apply(alveolus="com.company:app:1.0.0")
"""
