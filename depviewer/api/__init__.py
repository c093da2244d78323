"""HTTP façade over the graph store and resolver."""
