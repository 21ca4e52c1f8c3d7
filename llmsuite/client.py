import logging

from dotenv import load_dotenv

from .framework.stream_response import StreamResponse
from .provider import ProviderFactory

logger = logging.getLogger(__name__)


class Client:
    def __init__(self, provider_configs: dict = None):
        """
        Initialize the client with provider configurations.
        Use the ProviderFactory to create provider instances.

        Args:
            provider_configs (dict): A dictionary containing provider configurations.
                Each key should be a provider string (e.g., "anthropic" or "bedrock"),
                and the value should be a dictionary of configuration options for that provider.
                For example:
                {
                    "openai": {"api_key": "your_openai_api_key"},
                    "bedrock": {
                        "api_key": "your_bedrock_api_key",
                        "region": "us-west-2",
                        "on_decode_error": "skip"
                    }
                }
        """
        # API keys not given in the config are read from the environment, .env included
        load_dotenv()
        self.providers = {}
        self.provider_configs = dict(provider_configs or {})
        self._chat = None
        self._initialize_providers()

    def _initialize_providers(self):
        """Helper method to initialize or update providers."""
        for provider_key, config in self.provider_configs.items():
            provider_key = self._validate_provider_key(provider_key)
            self.providers[provider_key] = ProviderFactory.create_provider(
                provider_key, config
            )

    def _validate_provider_key(self, provider_key):
        """
        Validate if the provider key corresponds to a supported provider.
        """
        supported_providers = ProviderFactory.get_supported_providers()

        if provider_key not in supported_providers:
            raise ValueError(
                f"Invalid provider key '{provider_key}'. Supported providers: {supported_providers}. "
                "Make sure the model string is formatted correctly as 'provider:model'."
            )

        return provider_key

    def configure(self, provider_configs: dict = None):
        """
        Configure the client with provider configurations.
        """
        if provider_configs is None:
            return

        self.provider_configs.update(provider_configs)
        self._initialize_providers()  # NOTE: This will override existing provider instances.

    def get_provider(self, provider_key: str):
        """Return the provider for ``provider_key``, creating it on first use."""
        provider_key = self._validate_provider_key(provider_key)
        if provider_key not in self.providers:
            config = self.provider_configs.get(provider_key, {})
            self.providers[provider_key] = ProviderFactory.create_provider(provider_key, config)
        return self.providers[provider_key]

    @property
    def chat(self):
        """Return the chat API interface."""
        if not self._chat:
            self._chat = Chat(self)
        return self._chat


class Chat:
    def __init__(self, client: "Client"):
        self.client = client
        self._completions = Completions(self.client)

    @property
    def completions(self):
        """Return the completions interface."""
        return self._completions


class Completions:
    def __init__(self, client: "Client"):
        self.client = client

    async def create(self, model: str, messages, **kwargs) -> StreamResponse:
        """
        Start a streaming chat completion.

        ``messages`` may be a Context, Message objects or message dicts. The
        returned StreamResponse yields StreamChunks; ``await stream.response()``
        gives the final Response.
        """
        # Check that correct format is used
        if ":" not in model:
            raise ValueError(
                f"Invalid model format. Expected 'provider:model', got '{model}'"
            )

        # Extract the provider key from the model identifier, e.g., "anthropic:claude-sonnet-4-5"
        provider_key, model_name = model.split(":", 1)
        provider = self.client.get_provider(provider_key)

        logger.debug(f"Streaming {model_name} via {provider!r}")
        return await provider.chat_completions_create(model_name, messages, **kwargs)
