"""Order-to-deal reconciliation -- schemas, field mapping, status policy, and the engine.

Maps storefront orders onto CRM deals (field mapper + status policy), locates
existing deals by order id, upserts buyer contacts, and orchestrates
create/update/refund reconciliation through ReconciliationEngine.
"""
