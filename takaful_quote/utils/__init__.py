"""
Utility modules for the quote flow
"""
from .config_loader import QuoteFlowConfig, get_quote_flow_config, load_quote_flow_config

__all__ = [
    'QuoteFlowConfig',
    'get_quote_flow_config',
    'load_quote_flow_config',
]
