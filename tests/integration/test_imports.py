"""Test that all modules can be imported without circular import errors."""


def test_no_circular_imports():
    """Verify all public modules import cleanly."""
    import eventmigrate
    import eventmigrate.checkpoint
    import eventmigrate.converter
    import eventmigrate.exceptions
    import eventmigrate.extractor
    import eventmigrate.models
    import eventmigrate.observability
    import eventmigrate.orchestrator
    import eventmigrate.reports
    import eventmigrate.serialization
    import eventmigrate.target
    import eventmigrate.validator

    assert eventmigrate.__version__


def test_top_level_exports_match_modules():
    """Verify top-level re-exports resolve to the defining modules' objects."""
    from eventmigrate import MigrationOrchestrator, MigrationValidator, TargetStore
    from eventmigrate.orchestrator import MigrationOrchestrator as orchestrator_cls
    from eventmigrate.target import TargetStore as target_cls
    from eventmigrate.validator import MigrationValidator as validator_cls

    assert MigrationOrchestrator is orchestrator_cls
    assert MigrationValidator is validator_cls
    assert TargetStore is target_cls


def test_all_names_resolve():
    """Every name in __all__ is importable from the package."""
    import eventmigrate

    missing = [name for name in eventmigrate.__all__ if not hasattr(eventmigrate, name)]
    assert missing == []
