"""Basic tests to verify project setup."""


def test_import_nodectl():
    """Test that nodectl package can be imported."""
    import nodectl

    assert nodectl.__version__ == "0.1.0"


def test_import_cli():
    """Test that CLI module can be imported."""
    from nodectl import cli

    assert cli.app is not None


def test_import_orchestrator():
    """Test that the orchestrator can be imported."""
    from nodectl.orchestrator import Orchestrator

    assert Orchestrator is not None


def test_import_models():
    """Test that models module can be imported."""
    from nodectl import models

    assert models.Node is not None
    assert models.StatusSnapshot is not None
