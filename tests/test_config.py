import importlib

from connections.config import app_config


def test_only_local_configs_default_the_jwt_secret(monkeypatch):
    monkeypatch.delenv('JWT_SECRET', raising=False)
    reloaded = importlib.reload(app_config)
    try:
        assert reloaded.Config.JWT_SECRET is None
        assert reloaded.ProductionConfig.JWT_SECRET is None
        assert reloaded.DevelopmentConfig.JWT_SECRET
        assert reloaded.TestingConfig.JWT_SECRET == 'testing-jwt-secret'
    finally:
        monkeypatch.undo()
        importlib.reload(app_config)
