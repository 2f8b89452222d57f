"""Example material for hadir.

basic_usage.py
    Bootstrap, a healthy cycle, failover on a failing write probe,
    and failback with reconciliation. Start here.

hadird.yaml
    Annotated configuration file for a daemonized deployment.

Run the example:
    python examples/basic_usage.py
"""
