"""
Renderers used by the worker to produce a textual snapshot of its store in
response to a ``DMP`` command. The snapshot is for humans and debugging; it
is not intended to round-trip through the store.
"""

import abc
import json
import pprint

from typing import Any, Dict

try:
    import yaml

    have_yaml = True
except ImportError:
    have_yaml = False


class ISerializer(abc.ABC):
    """
    This class represents the base interface for a snapshot renderer.
    """

    @abc.abstractmethod  # pragma: no branch
    def encode(self, data, **kwargs) -> bytes:
        """ Returns the rendered data as a bytes object. """


class SerializerRegistry(object):
    """ This registry keeps track of snapshot rendering strategies by a
    convenience name.
    """

    def __init__(self):
        self._serializers = {}  # type: Dict[str, ISerializer]
        self._default_codec = None

    @property
    def serializers(self) -> Dict[str, ISerializer]:
        """ Return a dict of the available serializers """
        return self._serializers

    @property
    def default(self) -> str:
        return self._default_codec

    def register(self, name: str, serializer: ISerializer):
        """ Register a new serializer.

        :param name: A convenience name for the serialization method.

        :param serializer: An object that implements the ISerializer interface.
        """
        if not isinstance(serializer, ISerializer):
            raise Exception(
                f"Invalid serializer '{name}'. Expected an instance of ISerializer"
            )

        self._serializers[name] = serializer

    def set_default(self, name: str):
        """ Set the default serialization method.

        :param name: The name of a registered serialization method (e.g. text)

        Raises:
            Exception: If the serialization method requested is not available.
        """
        self.get_codec(name)
        self._default_codec = name

    def get_codec(self, name: str) -> ISerializer:
        try:
            return self._serializers[name]
        except KeyError:
            raise Exception(f"Invalid serializer '{name}'") from None

    def dumps(self, data: Any, serialization: str = None, **kwargs) -> bytes:
        """ Render data as bytes.

        :param data: The data to render.

        :param serialization: A string naming the serialization strategy to
          apply to the data (e.g. ``text``, ``json``). If not specified then
          the default serializer is used.

        Raises:
            Exception: If the serialization method requested is not available.
        """
        serializer = self.get_codec(serialization or self._default_codec)
        return serializer.encode(data, **kwargs)


def register_text(registry: SerializerRegistry) -> None:
    """ Register a renderer producing the Python representation of the data """

    class TextSerializer(ISerializer):
        def encode(self, data: Any, **kwargs) -> bytes:
            """ Render *data* with :func:`repr` and return a :class:`bytes` object.

            Strings are passed through unchanged.
            """
            text = data if isinstance(data, str) else repr(data)
            return text.encode("utf-8", "surrogateescape")

    registry.register("text", TextSerializer())


def register_pretty(registry: SerializerRegistry) -> None:
    """ Register a renderer producing an indented, sorted representation """

    class PrettySerializer(ISerializer):
        def encode(self, data: Any, **kwargs) -> bytes:
            return pprint.pformat(data, width=kwargs.get("width", 80)).encode("utf-8")

    registry.register("pretty", PrettySerializer())


def register_json(registry: SerializerRegistry) -> None:
    """ Register a JSON renderer. """

    class JsonSerializer(ISerializer):
        def encode(self, data: Any, **kwargs) -> bytes:
            """ Encode an object into JSON and return a :class:`bytes` object.

            :returns: a serialized message as a bytes object.
            """
            return json.dumps(data, sort_keys=True).encode("utf-8")

    registry.register("json", JsonSerializer())


def register_yaml(registry: SerializerRegistry) -> None:
    """ Register a YAML renderer.

    Only available when PyYAML is installed (``pip install detach[yaml]``).
    """

    if have_yaml:

        class YamlSerializer(ISerializer):
            def encode(self, data: Any, **kwargs) -> bytes:
                return yaml.safe_dump(data, default_flow_style=False).encode("utf-8")

        registry.register("yaml", YamlSerializer())


def initialize(registry: SerializerRegistry):
    """ Register serialization methods and set a default """
    register_text(registry)
    register_pretty(registry)
    register_json(registry)
    register_yaml(registry)

    registry.set_default("text")


"""
.. data:: registry

Global registry of snapshot serializers.
"""
registry = SerializerRegistry()

dumps = registry.dumps

initialize(registry)
