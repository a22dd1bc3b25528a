"""Gate backend: components, transport, application and runtime layers."""
