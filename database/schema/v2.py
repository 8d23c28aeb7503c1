"""Schema v2 - Track when auctions were closed and when digests went out.

Adds auctions.closed_at (set by the expiry sweep and by force-close) and
subscriptions.last_sent_at so a restarted digest worker does not mail the same
subscriber twice on one day. Also indexes open auctions by end date for the
expiry sweep.
"""
import copy

from .v1 import schema as v1_schema

schema = copy.deepcopy(v1_schema)
schema['version'] = 2

_tables = {table['name']: table for table in schema['tables']}
_tables['auctions']['columns'].insert(
    -2, {'name': 'closed_at', 'type': 'TIMESTAMPTZ'}
)
_tables['auctions']['indexes'].append(
    {'name': 'idx_auctions_open_end', 'columns': ['end_date'], 'where': "status = 'open'"}
)
_tables['subscriptions']['columns'].insert(
    -2, {'name': 'last_sent_at', 'type': 'TIMESTAMPTZ'}
)

schema['migrations'] = [
    '''
    ALTER TABLE auctions
    ADD COLUMN IF NOT EXISTS closed_at TIMESTAMPTZ;
    ''',
    '''
    UPDATE auctions SET closed_at = updated_at
    WHERE status = 'closed' AND closed_at IS NULL;
    ''',
    '''
    CREATE INDEX IF NOT EXISTS idx_auctions_open_end ON auctions(end_date)
    WHERE status = 'open';
    ''',
    '''
    ALTER TABLE subscriptions
    ADD COLUMN IF NOT EXISTS last_sent_at TIMESTAMPTZ;
    '''
]
