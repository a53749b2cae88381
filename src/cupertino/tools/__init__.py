"""Tool, resource and prompt providers over the indexes."""

import logging
from typing import Optional

from ..config import Config
from ..search.index import SearchIndex
from ..search.samples import SampleIndex
from ..server.providers import CompositePromptProvider, CompositeResourceProvider, CompositeToolProvider
from .docs import DocsToolProvider
from .prompts import DocsPromptProvider
from .resources import DocsResourceProvider
from .samples import SampleToolProvider

logger = logging.getLogger(__name__)


def register_all_providers(
	tools: CompositeToolProvider,
	resources: CompositeResourceProvider,
	prompts: CompositePromptProvider,
	config: Config,
	index: SearchIndex,
	samples: Optional[SampleIndex] = None,
) -> None:
	"""Register every provider. Sample tools are skipped without a sample index."""
	tools.register(DocsToolProvider(
		index,
		samples,
		teaser_limit=config.teaser_limit,
		default_limit=config.default_search_limit,
		max_limit=config.max_search_limit,
	))
	if samples is not None:
		tools.register(SampleToolProvider(samples))
	else:
		logger.info("Sample code tools unavailable (no sample index)")

	resources.register(DocsResourceProvider(index))
	prompts.register(DocsPromptProvider())


__all__ = [
	"DocsPromptProvider",
	"DocsResourceProvider",
	"DocsToolProvider",
	"SampleToolProvider",
	"register_all_providers",
]
