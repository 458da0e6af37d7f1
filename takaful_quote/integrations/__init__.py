"""
Integrations layer.
This package contains all code used to communicate with external systems such as:
- Zain Takaful partner APIs (eligibility, vehicle data, registry, plan generation)
- Staff discount code authority
- WhatsApp Business API (payment link dispatch)
- CRM customer lookup by CPR

Key rule:
- The quote flow MUST NOT call external APIs directly.
- The flow calls integration clients (under takaful_quote/integrations/clients) through
  the contracts in takaful_quote/integrations/contracts.
- We use MOCK clients during development and swap to REAL_HTTP clients when APIs are available.

Switching implementations:
- The selection of mock vs real clients should happen in ONE place (takaful_quote/api/dependencies.py).
"""
