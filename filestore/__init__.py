"""
Multi-backend object storage with health-aware failover.
"""

__version__ = "0.1.0"
