from heatlens.capture.chain import PLACEHOLDER_PNG, PLACEHOLDER_PROVIDER, ProviderChain
from heatlens.capture.providers import (
    Capture,
    PlaywrightProvider,
    ScreenshotMachineProvider,
    ScreenshotProvider,
    ThumIoProvider,
    build_providers,
)

__all__ = [
    "PLACEHOLDER_PNG",
    "PLACEHOLDER_PROVIDER",
    "ProviderChain",
    "Capture",
    "PlaywrightProvider",
    "ScreenshotMachineProvider",
    "ScreenshotProvider",
    "ThumIoProvider",
    "build_providers",
]
