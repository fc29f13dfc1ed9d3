from typing import Dict, Tuple, Type

from backend.models.integration import IntegrationProvider
from backend.services.clients.base import AccountDataAdapter
from backend.services.clients.forex_factory_client import ForexFactoryClient
from backend.services.clients.metatrader_client import MT4Client, MT5Client
from backend.services.clients.myfxbook_client import MyFXBookClient

ADAPTER_CLASSES: Dict[IntegrationProvider, Type[AccountDataAdapter]] = {
    IntegrationProvider.MYFXBOOK: MyFXBookClient,
    IntegrationProvider.MT4: MT4Client,
    IntegrationProvider.MT5: MT5Client,
    IntegrationProvider.FOREX_FACTORY: ForexFactoryClient,
}


def build_adapter(provider: IntegrationProvider, **kwargs) -> AccountDataAdapter:
    try:
        adapter_cls = ADAPTER_CLASSES[provider]
    except KeyError:
        raise ValueError(f"Unsupported provider: {provider}")
    return adapter_cls(**kwargs)


def required_fields(provider: IntegrationProvider) -> Tuple[str, ...]:
    return ADAPTER_CLASSES[provider].required_fields
