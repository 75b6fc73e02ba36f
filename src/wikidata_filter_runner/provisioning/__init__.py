"""Host provisioning: packages, toolchains, source checkout, and build."""
