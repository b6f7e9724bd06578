"""
Provisioning primitives shared by all bundle components: configuration
models and loading, installation state, configuration file reconciliation,
change detection and integration SQL.
"""
