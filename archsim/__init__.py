"""
archsim - traffic and failure simulation for system designs.

A design is a graph of infrastructure components (load balancers, caches,
databases, queues, ...). The engine pushes synthetic load through it tick
by tick, injects chaos, drives autoscaling, detects failures and scores
the result.
"""

__version__ = "1.0.0"
