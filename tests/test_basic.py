"""Basic sanity tests"""

import sys


def test_imports():
    """Test that all modules can be imported"""
    from fieldsync import sync, storage, crypto, network, client, server, config
    assert sync.SyncEngine is not None


def test_python_version():
    """Test Python version is adequate"""
    assert sys.version_info >= (3, 8)


def test_public_api():
    import fieldsync
    assert 'SyncEngine' in fieldsync.__all__
    assert fieldsync.__version__
