"""Schema v1 - Initial database schema.

This version includes tables for:
- Users and authentication sessions
- Scrap items
- Auctions and bids
- Payments and transactions
- Notification and newsletter subscriptions
"""

TIMESTAMPS = [
    {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
    {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
]

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'email', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'password_hash', 'type': 'TEXT', 'nullable': False},
                {'name': 'role', 'type': 'TEXT', 'nullable': False, 'default': "'buyer'",
                 'check': "role IN ('buyer', 'seller', 'auction_manager', 'system_admin', 'super_user')"},
                {'name': 'address_street', 'type': 'TEXT'},
                {'name': 'address_city', 'type': 'TEXT'},
                {'name': 'address_country', 'type': 'TEXT'},
                {'name': 'phone', 'type': 'TEXT'},
                *TIMESTAMPS
            ],
            'indexes': [
                {'name': 'idx_users_role', 'columns': ['role']}
            ]
        },
        {
            'name': 'auth_sessions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'token', 'type': 'TEXT', 'nullable': False},
                {'name': 'expires_at', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'revoked', 'type': 'BOOLEAN', 'nullable': False, 'default': 'false'},
                {'name': 'revoked_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'user_agent', 'type': 'TEXT'},
                {'name': 'ip_address', 'type': 'TEXT'},
                {'name': 'last_used_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_sessions_token', 'columns': ['token'], 'unique': True},
                {'name': 'idx_sessions_active', 'columns': ['user_id'], 'where': 'NOT revoked'}
            ]
        },
        {
            'name': 'scrap_items',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'weight', 'type': 'NUMERIC', 'nullable': False, 'check': 'weight >= 0'},
                {'name': 'category_type', 'type': 'TEXT', 'nullable': False,
                 'check': "category_type IN ('metal', 'plastic', 'electronic', 'other')"},
                {'name': 'category_sub_category', 'type': 'TEXT'},
                {'name': 'category_classification', 'type': 'TEXT'},
                {'name': 'status_type', 'type': 'TEXT', 'nullable': False, 'default': "'unprocessed'",
                 'check': "status_type IN ('unprocessed', 'sorted', 'ready_for_auction', 'recycled')"},
                {'name': 'status_reason', 'type': 'TEXT'},
                {'name': 'location_type', 'type': 'TEXT', 'nullable': False,
                 'check': "location_type IN ('warehouse', 'recycling_center', 'auction_house')"},
                {'name': 'location_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'location_warehouse_section', 'type': 'TEXT'},
                {'name': 'received_by', 'type': 'UUID', 'nullable': False},
                {'name': 'sorted_by', 'type': 'UUID'},
                {'name': 'images', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                *TIMESTAMPS
            ],
            'foreign_keys': [
                {'columns': ['received_by'], 'references': 'users(id)'},
                {'columns': ['sorted_by'], 'references': 'users(id)', 'on_delete': 'SET NULL'}
            ],
            'indexes': [
                {'name': 'idx_scrap_status', 'columns': ['status_type']},
                {'name': 'idx_scrap_category', 'columns': ['category_type']},
                {'name': 'idx_scrap_location', 'columns': ['location_type']}
            ]
        },
        {
            'name': 'auctions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT', 'nullable': False},
                {'name': 'scrap_item_id', 'type': 'UUID', 'nullable': False},
                {'name': 'start_date', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'end_date', 'type': 'TIMESTAMPTZ', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'open'",
                 'check': "status IN ('open', 'closed', 'cancelled')"},
                {'name': 'highest_bid_id', 'type': 'UUID'},
                {'name': 'reserve_price', 'type': 'NUMERIC', 'nullable': False, 'default': '0',
                 'check': 'reserve_price >= 0'},
                {'name': 'winner_id', 'type': 'UUID'},
                *TIMESTAMPS
            ],
            'checks': ['start_date < end_date'],
            'foreign_keys': [
                {'columns': ['scrap_item_id'], 'references': 'scrap_items(id)'},
                {'columns': ['highest_bid_id'], 'references': 'bids(id)', 'on_delete': 'SET NULL'},
                {'columns': ['winner_id'], 'references': 'users(id)', 'on_delete': 'SET NULL'}
            ],
            'indexes': [
                {'name': 'idx_auctions_status', 'columns': ['status']},
                {'name': 'idx_auctions_dates', 'columns': ['start_date', 'end_date']}
            ]
        },
        {
            'name': 'bids',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'amount', 'type': 'NUMERIC', 'nullable': False, 'check': 'amount >= 0'},
                {'name': 'auction_id', 'type': 'UUID', 'nullable': False},
                {'name': 'bidder_id', 'type': 'UUID', 'nullable': False},
                {'name': 'bid_date', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'",
                 'check': "status IN ('active', 'accepted', 'rejected')"},
                *TIMESTAMPS
            ],
            'foreign_keys': [
                {'columns': ['auction_id'], 'references': 'auctions(id)', 'on_delete': 'CASCADE'},
                {'columns': ['bidder_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_bids_auction', 'columns': ['auction_id', 'amount']},
                {'name': 'idx_bids_bidder', 'columns': ['bidder_id']}
            ]
        },
        {
            'name': 'payments',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'payment_id', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'amount', 'type': 'NUMERIC', 'nullable': False, 'check': 'amount >= 0'},
                {'name': 'date', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'method', 'type': 'TEXT', 'nullable': False,
                 'check': "method IN ('credit_card', 'bank_transfer', 'paypal', 'other')"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'",
                 'check': "status IN ('completed', 'pending', 'failed')"},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                *TIMESTAMPS
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_payments_user', 'columns': ['user_id']}
            ]
        },
        {
            'name': 'transactions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'transaction_id', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'amount', 'type': 'NUMERIC', 'nullable': False, 'check': 'amount >= 0'},
                {'name': 'date', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                {'name': 'payment_method', 'type': 'TEXT', 'nullable': False,
                 'check': "payment_method IN ('credit_card', 'bank_transfer', 'paypal', 'other')"},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'",
                 'check': "status IN ('completed', 'pending', 'failed', 'refunded')"},
                {'name': 'payment_ref', 'type': 'UUID', 'nullable': False},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                *TIMESTAMPS
            ],
            'foreign_keys': [
                {'columns': ['payment_ref'], 'references': 'payments(id)'},
                {'columns': ['user_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_transactions_payment', 'columns': ['payment_ref']},
                {'name': 'idx_transactions_user', 'columns': ['user_id']}
            ]
        },
        {
            'name': 'subscriptions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False, 'unique': True},
                {'name': 'frequency', 'type': 'TEXT', 'nullable': False,
                 'check': "frequency IN ('daily', 'weekly', 'monthly')"},
                {'name': 'categories', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                *TIMESTAMPS
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ]
        },
        {
            'name': 'newsletter_subscriptions',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID', 'nullable': False, 'unique': True},
                {'name': 'subscription_type', 'type': 'TEXT', 'nullable': False,
                 'check': "subscription_type IN ('daily', 'weekly', 'monthly')"},
                {'name': 'notification_types', 'type': 'TEXT[]', 'nullable': False, 'default': "'{}'"},
                *TIMESTAMPS
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ]
        }
    ],
    'triggers': [
        {
            'name': f'touch_{table}_updated_at',
            'function_name': 'touch_updated_at',
            'table': table,
            'timing': 'BEFORE',
            'event': 'UPDATE',
            'function_body': '''
                BEGIN
                    NEW.updated_at = now();
                    RETURN NEW;
                END;
            '''
        }
        for table in (
            'users', 'scrap_items', 'auctions', 'bids', 'payments',
            'transactions', 'subscriptions', 'newsletter_subscriptions'
        )
    ],
    'migrations': []
}
