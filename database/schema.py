SCHEMA = """
CREATE TABLE IF NOT EXISTS user_pro_status (
    user_id UUID PRIMARY KEY REFERENCES auth.users(id) ON DELETE CASCADE,
    is_pro BOOLEAN NOT NULL DEFAULT FALSE,
    pro_expires_at TIMESTAMPTZ,

    -- Manual comp: ignores expiry and billing events. Set by operators only.
    override_pro BOOLEAN NOT NULL DEFAULT FALSE,

    -- Billing identity (lookup only). Written by subscription sync.
    stripe_customer_id TEXT,

    notes TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_user_pro_status_customer
    ON user_pro_status(stripe_customer_id);

-- Expiry sweep candidates
CREATE INDEX IF NOT EXISTS idx_user_pro_status_expiring
    ON user_pro_status(pro_expires_at)
    WHERE is_pro = TRUE AND override_pro = FALSE AND pro_expires_at IS NOT NULL;

ALTER TABLE user_pro_status ENABLE ROW LEVEL SECURITY;

DROP POLICY IF EXISTS "Users read own pro status" ON user_pro_status;
CREATE POLICY "Users read own pro status"
    ON user_pro_status FOR SELECT
    USING (auth.uid() = user_id);
"""
