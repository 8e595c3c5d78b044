"""epp-proxy: a machine-in-the-middle relay for EPP."""
