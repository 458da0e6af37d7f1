"""
Mock integration clients.

These clients return fake (but realistic) responses without calling any external API.
They are used when:
- Zain Takaful partner APIs or WhatsApp credentials are not available
- We want to test the quote flow end-to-end without external dependencies

Important:
- Mock clients must follow the SAME interface as real HTTP clients.
- Mock clients should return data shaped according to takaful_quote/integrations/contracts/*

Switching to real:
When real endpoints and credentials are provided, set INTEGRATIONS_MODE=real;
the swap happens in takaful_quote/api/dependencies.py only.
"""
