# Domain entities
