"""
Billing documents: invoices, purchase bills, purchase orders, credit and debit notes.
"""
