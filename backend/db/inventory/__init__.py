"""
Inventory models.

- InventoryItem (stock of one product in one warehouse)
- StockMovement (append-only record of every quantity change)
"""
