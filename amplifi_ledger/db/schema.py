# Lamport columns are TEXT holding decimal integers so the full unsigned
# 64-bit range survives; SQLite INTEGER tops out at 2**63 - 1.

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS campaigns (
    id TEXT PRIMARY KEY,
    token_mint TEXT,
    name TEXT,
    created_at_unix INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS epochs (
    id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL,
    epoch_number INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    start_at_unix INTEGER,
    end_at_unix INTEGER,
    reward_pool_lamports TEXT NOT NULL DEFAULT '0',
    settled_at_unix INTEGER,
    distributed_lamports TEXT,
    total_engagement_points REAL,
    participant_count INTEGER
);

CREATE TABLE IF NOT EXISTS engagement_events (
    id TEXT PRIMARY KEY,
    campaign_id TEXT NOT NULL,
    epoch_id TEXT,
    wallet_pubkey TEXT NOT NULL,
    final_score REAL,
    is_duplicate INTEGER NOT NULL DEFAULT 0,
    is_spam INTEGER NOT NULL DEFAULT 0,
    created_at_unix INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS engagement_events_campaign_idx
    ON engagement_events(campaign_id, created_at_unix);
CREATE INDEX IF NOT EXISTS engagement_events_wallet_idx
    ON engagement_events(wallet_pubkey);

CREATE TABLE IF NOT EXISTS reward_claims (
    id TEXT PRIMARY KEY,
    epoch_id TEXT NOT NULL,
    wallet_pubkey TEXT NOT NULL,
    amount_lamports TEXT NOT NULL,
    tx_sig TEXT,
    claimed_at_unix INTEGER NOT NULL,
    status TEXT,
    UNIQUE (epoch_id, wallet_pubkey)
);

CREATE TABLE IF NOT EXISTS campaign_participants (
    campaign_id TEXT NOT NULL,
    wallet_pubkey TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    joined_at_unix INTEGER,
    PRIMARY KEY (campaign_id, wallet_pubkey)
);

CREATE TABLE IF NOT EXISTS project_profiles (
    token_mint TEXT PRIMARY KEY,
    name TEXT,
    symbol TEXT,
    image_url TEXT,
    updated_at_unix INTEGER
);
"""

EPOCH_REWARDS_SQL = """
CREATE TABLE IF NOT EXISTS epoch_rewards (
    epoch_id TEXT NOT NULL,
    wallet_pubkey TEXT NOT NULL,
    reward_lamports TEXT NOT NULL,
    reward_share_bps INTEGER,
    engagement_count INTEGER,
    total_score REAL,
    claimed INTEGER NOT NULL DEFAULT 0,
    calculated_at_unix INTEGER,
    PRIMARY KEY (epoch_id, wallet_pubkey)
);
"""

LEGACY_EPOCH_SCORES_SQL = """
CREATE TABLE IF NOT EXISTS epoch_scores (
    epoch_id TEXT NOT NULL,
    wallet_pubkey TEXT NOT NULL,
    total_engagement_points REAL,
    engagement_count INTEGER,
    final_score REAL,
    reward_share_bps INTEGER,
    reward_lamports TEXT NOT NULL,
    claimed INTEGER NOT NULL DEFAULT 0,
    calculated_at_unix INTEGER,
    PRIMARY KEY (epoch_id, wallet_pubkey)
);
"""

MILESTONE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS marketcap_milestone_confirmations (
    commitment_id TEXT NOT NULL,
    milestone_id TEXT NOT NULL,
    token_mint TEXT NOT NULL,
    confirmed_at_unix INTEGER NOT NULL,
    total_funded_lamports TEXT NOT NULL,
    unlock_lamports TEXT NOT NULL,
    threshold_usd REAL NOT NULL,
    chain_id TEXT NOT NULL,
    pair_address TEXT NOT NULL,
    dex_id TEXT NOT NULL,
    evidence_json TEXT NOT NULL,
    PRIMARY KEY (commitment_id, milestone_id)
);

CREATE INDEX IF NOT EXISTS marketcap_milestone_confirmations_token_idx
    ON marketcap_milestone_confirmations(token_mint, confirmed_at_unix);
"""

PRICE_CACHE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS token_price_cache (
    mint TEXT PRIMARY KEY,
    price_usd REAL NOT NULL,
    updated_at_unix INTEGER NOT NULL
);
"""
