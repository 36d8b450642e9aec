"""Test that the project setup is working correctly."""

import prediction_market_scanner


def test_version() -> None:
    """Test that version is defined."""
    assert prediction_market_scanner.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from prediction_market_scanner import alerter, detector, ingestor, scan, storage

    # Just verify imports work
    assert ingestor is not None
    assert detector is not None
    assert scan is not None
    assert alerter is not None
    assert storage is not None
