import pytest

from amqp_poster.config import PosterConfig, ServerParameters, Subscription
from amqp_poster.exceptions import ConfigurationError
from amqp_poster.poster import Poster


def test_defaults():
    config = PosterConfig.create(name="Responder", server="amqp://localhost")

    assert config.name == "Responder"
    assert config.uid == ""
    assert config.prefetch == 1
    assert config.subscribe == ()
    assert config.request_timeout is None


def test_structured_server_parameters():
    config = PosterConfig.create(
        name="Responder",
        server={"hostname": "rabbit", "port": 5671, "username": "svc", "password": "pw"},
    )

    assert isinstance(config.server, ServerParameters)
    kwargs = config.server.connection_kwargs()
    assert kwargs["hostname"] == "rabbit"
    assert kwargs["port"] == 5671
    assert kwargs["virtual_host"] == "/"
    assert kwargs["ssl"] is False


def test_subscriptions_are_parsed():
    config = PosterConfig.create(
        name="Logger",
        server="amqp://localhost",
        subscribe=[{"exchange": "NewNumber"}, {"exchange": "Error", "once_per_service": True}],
    )

    assert config.subscribe == (
        Subscription(exchange="NewNumber", once_per_service=False),
        Subscription(exchange="Error", once_per_service=True),
    )


@pytest.mark.parametrize(
    "options",
    [
        {"server": "amqp://localhost"},
        {"name": "", "server": "amqp://localhost"},
        {"name": "Responder"},
        {"name": "Responder", "server": ""},
        {"name": "Responder", "server": "amqp://localhost", "prefetch": 0},
        {"name": "Responder", "server": "amqp://localhost", "subscribe": [{"exchange": ""}]},
        {"name": "Responder", "server": "amqp://localhost", "request_timeout": -1},
        {"name": "Responder", "server": "amqp://localhost", "unknown": True},
        {"name": "Responder", "server": {"hostname": "rabbit", "protocol": "amqp"}},
    ],
)
def test_invalid_options_raise_configuration_error(options):
    with pytest.raises(ConfigurationError):
        PosterConfig.create(**options)


def test_configuration_error_is_raised_before_any_broker_io(transport):
    with pytest.raises(ConfigurationError):
        Poster.from_options(transport=transport, name="Responder")

    assert transport.calls == []


def test_config_is_immutable():
    config = PosterConfig.create(name="Responder", server="amqp://localhost")

    with pytest.raises(Exception):
        config.name = "Other"
