"""
Real HTTP integration clients.

These clients communicate with real external systems via HTTP (httpx), e.g.:
- Zain Takaful partner APIs (eligibility, vehicle data, traffic registry, plans)
- WhatsApp Business API (payment link dispatch)

Important:
- Must implement the same interfaces as the mock clients
- Must return data shaped according to takaful_quote/integrations/contracts/*

Switching:
The selection of mock vs real clients should happen in takaful_quote/api/dependencies.py only.
"""
