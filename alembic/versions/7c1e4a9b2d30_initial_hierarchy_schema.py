"""initial_hierarchy_schema

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-18 09:12:44.318204

"""
from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '7c1e4a9b2d30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the jurisdiction tree, admins, events and cascade tables."""
    op.execute("""
-- Enable UUID extension
CREATE EXTENSION IF NOT EXISTS "uuid-ossp";

-- ============================================
-- JURISDICTION TREE
-- ============================================

CREATE TABLE IF NOT EXISTS states (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    name VARCHAR(100) UNIQUE NOT NULL,
    code VARCHAR(3) UNIQUE,
    description TEXT,
    country VARCHAR(100),
    is_active BOOLEAN NOT NULL DEFAULT FALSE,
    status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'approved', 'rejected')),
    created_by UUID,
    reviewed_by UUID,
    reviewed_at TIMESTAMP WITH TIME ZONE,
    rejection_reason TEXT,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS branches (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    name VARCHAR(150) NOT NULL,
    state_id UUID NOT NULL REFERENCES states(id) ON DELETE RESTRICT,
    location VARCHAR(255),
    is_active BOOLEAN NOT NULL DEFAULT FALSE,
    status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'approved', 'rejected')),
    created_by UUID,
    reviewed_by UUID,
    reviewed_at TIMESTAMP WITH TIME ZONE,
    rejection_reason TEXT,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (name, state_id)
);

CREATE TABLE IF NOT EXISTS zones (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    name VARCHAR(150) NOT NULL,
    branch_id UUID NOT NULL REFERENCES branches(id) ON DELETE RESTRICT,
    is_active BOOLEAN NOT NULL DEFAULT FALSE,
    status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'approved', 'rejected')),
    created_by UUID,
    reviewed_by UUID,
    reviewed_at TIMESTAMP WITH TIME ZONE,
    rejection_reason TEXT,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (name, branch_id)
);

CREATE INDEX IF NOT EXISTS idx_branches_state_active ON branches(state_id, is_active);
CREATE INDEX IF NOT EXISTS idx_zones_branch_active ON zones(branch_id, is_active);

-- ============================================
-- PRINCIPALS
-- ============================================

CREATE TABLE IF NOT EXISTS users (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    name VARCHAR(255) NOT NULL,
    email VARCHAR(255) UNIQUE NOT NULL,
    phone VARCHAR(50),
    role VARCHAR(30) NOT NULL CHECK (role IN (
        'super_admin', 'state_admin', 'branch_admin', 'zonal_admin', 'worker', 'registrar'
    )),
    state_id UUID REFERENCES states(id) ON DELETE SET NULL,
    branch_id UUID REFERENCES branches(id) ON DELETE SET NULL,
    zone_id UUID REFERENCES zones(id) ON DELETE SET NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    is_approved BOOLEAN NOT NULL DEFAULT FALSE,
    approved_by UUID REFERENCES users(id) ON DELETE SET NULL,
    approved_at TIMESTAMP WITH TIME ZONE,
    rejected_by UUID REFERENCES users(id) ON DELETE SET NULL,
    rejected_at TIMESTAMP WITH TIME ZONE,
    rejection_reason TEXT,
    disabled_by UUID REFERENCES users(id) ON DELETE SET NULL,
    disabled_at TIMESTAMP WITH TIME ZONE,
    disable_reason TEXT,
    enabled_by UUID REFERENCES users(id) ON DELETE SET NULL,
    enabled_at TIMESTAMP WITH TIME ZONE,
    replaced_by UUID REFERENCES users(id) ON DELETE SET NULL,
    replacement_date TIMESTAMP WITH TIME ZONE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    -- A role never holds a pointer below its own level
    CONSTRAINT users_role_jurisdiction_check CHECK (
        (role = 'super_admin' AND state_id IS NULL AND branch_id IS NULL AND zone_id IS NULL)
        OR (role = 'state_admin' AND branch_id IS NULL AND zone_id IS NULL)
        OR (role = 'branch_admin' AND zone_id IS NULL)
        OR role IN ('zonal_admin', 'worker', 'registrar')
    )
);

CREATE INDEX IF NOT EXISTS idx_users_role ON users(role);
CREATE INDEX IF NOT EXISTS idx_users_state ON users(state_id);
CREATE INDEX IF NOT EXISTS idx_users_branch ON users(branch_id);
CREATE INDEX IF NOT EXISTS idx_users_zone ON users(zone_id);

-- ============================================
-- PICKUP STATIONS (reference data)
-- ============================================

CREATE TABLE IF NOT EXISTS pickup_stations (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    name VARCHAR(255) NOT NULL,
    zone_id UUID NOT NULL REFERENCES zones(id) ON DELETE RESTRICT,
    branch_id UUID NOT NULL REFERENCES branches(id) ON DELETE RESTRICT,
    capacity INTEGER,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (name, zone_id)
);

CREATE INDEX IF NOT EXISTS idx_pickup_stations_zone ON pickup_stations(zone_id, is_active);

-- ============================================
-- EVENTS AND CASCADE
-- ============================================

CREATE TABLE IF NOT EXISTS events (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    name VARCHAR(255) NOT NULL,
    description TEXT,
    event_date TIMESTAMP WITH TIME ZONE NOT NULL,
    registration_deadline TIMESTAMP WITH TIME ZONE,
    banner_image_url TEXT,
    created_by UUID NOT NULL REFERENCES users(id) ON DELETE RESTRICT,
    creator_level VARCHAR(30) NOT NULL CHECK (creator_level IN (
        'super_admin', 'state_admin', 'branch_admin', 'zonal_admin'
    )),
    status VARCHAR(20) NOT NULL DEFAULT 'draft' CHECK (status IN (
        'draft', 'published', 'in_progress', 'completed', 'cancelled'
    )),
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    available_states UUID[] NOT NULL DEFAULT '{}',
    available_branches UUID[] NOT NULL DEFAULT '{}',
    available_zones UUID[] NOT NULL DEFAULT '{}',
    selected_branches UUID[] NOT NULL DEFAULT '{}',
    selected_zones UUID[] NOT NULL DEFAULT '{}',
    version INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_events_created_by ON events(created_by);
CREATE INDEX IF NOT EXISTS idx_events_status ON events(status);
CREATE INDEX IF NOT EXISTS idx_events_available_states ON events USING GIN (available_states);
CREATE INDEX IF NOT EXISTS idx_events_available_branches ON events USING GIN (available_branches);
CREATE INDEX IF NOT EXISTS idx_events_available_zones ON events USING GIN (available_zones);

CREATE TABLE IF NOT EXISTS event_pickup_stations (
    event_id UUID NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    pickup_station_id UUID NOT NULL REFERENCES pickup_stations(id) ON DELETE RESTRICT,
    zone_id UUID NOT NULL REFERENCES zones(id) ON DELETE RESTRICT,
    departure_time VARCHAR(50) NOT NULL,
    max_capacity INTEGER NOT NULL,
    current_count INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    assigned_by UUID REFERENCES users(id) ON DELETE SET NULL,
    assigned_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (event_id, pickup_station_id)
);

CREATE INDEX IF NOT EXISTS idx_event_pickup_zone ON event_pickup_stations(event_id, zone_id);

CREATE TABLE IF NOT EXISTS event_participation (
    event_id UUID NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    admin_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    status VARCHAR(20) NOT NULL CHECK (status IN (
        'pending', 'participating', 'not_participating'
    )),
    reason TEXT,
    confirmed_by UUID REFERENCES users(id) ON DELETE SET NULL,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (event_id, admin_id)
);

-- Append-only: rows are never updated or deleted by the application
CREATE TABLE IF NOT EXISTS event_status_timeline (
    id BIGSERIAL PRIMARY KEY,
    event_id UUID NOT NULL REFERENCES events(id) ON DELETE CASCADE,
    status VARCHAR(60) NOT NULL,
    updated_by UUID REFERENCES users(id) ON DELETE SET NULL,
    details JSONB NOT NULL DEFAULT '{}',
    timestamp TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_event_timeline_event ON event_status_timeline(event_id, id DESC);

COMMENT ON TABLE event_status_timeline IS 'Append-only status and participation history per event';
COMMENT ON COLUMN events.version IS 'Optimistic concurrency counter for delegation appends';
    """)


def downgrade() -> None:
    """Drop all hierarchy tables."""
    op.execute("""
DROP TABLE IF EXISTS event_status_timeline;
DROP TABLE IF EXISTS event_participation;
DROP TABLE IF EXISTS event_pickup_stations;
DROP TABLE IF EXISTS events;
DROP TABLE IF EXISTS pickup_stations;
DROP TABLE IF EXISTS users;
DROP TABLE IF EXISTS zones;
DROP TABLE IF EXISTS branches;
DROP TABLE IF EXISTS states;
    """)
