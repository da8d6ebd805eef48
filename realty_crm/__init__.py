"""
Real-Estate CRM Lending Core

Loan amortization engine and loan servicing for real-estate projects,
with Decimal money math, document storage and a FastAPI surface.
"""

__version__ = "1.0.0"
