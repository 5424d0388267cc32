from tortoise import BaseDBAsyncClient

RUN_IN_TRANSACTION = True


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        CREATE EXTENSION IF NOT EXISTS vector;
CREATE TABLE IF NOT EXISTS "sessions" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "session_id" VARCHAR(100) NOT NULL UNIQUE,
    "title" VARCHAR(500),
    "working_directory" VARCHAR(1000),
    "created_at" TIMESTAMPTZ NOT NULL,
    "updated_at" TIMESTAMPTZ
);
CREATE TABLE IF NOT EXISTS "participants" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "label" VARCHAR(200) NOT NULL,
    "identifier" VARCHAR(200) NOT NULL UNIQUE,
    "participant_type" VARCHAR(8) NOT NULL DEFAULT 'human'
);
CREATE TABLE IF NOT EXISTS "providers" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "name" VARCHAR(100) NOT NULL UNIQUE,
    "description" VARCHAR(500)
);
CREATE TABLE IF NOT EXISTS "modes" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "name" VARCHAR(50) NOT NULL UNIQUE,
    "description" VARCHAR(500)
);
CREATE TABLE IF NOT EXISTS "monologs" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "role" VARCHAR(9) NOT NULL,
    "first_message_id" VARCHAR(100) NOT NULL,
    "last_message_id" VARCHAR(100),
    "current_message_id" VARCHAR(100),
    "content" TEXT NOT NULL DEFAULT '',
    "embedding" vector(1536),
    "tokens_input" INT,
    "tokens_output" INT,
    "cost" DECIMAL(18,8),
    "started_at" TIMESTAMPTZ NOT NULL,
    "completed_at" TIMESTAMPTZ,
    "is_aborted" BOOL NOT NULL DEFAULT False,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "session_id" INT NOT NULL REFERENCES "sessions" ("id") ON DELETE CASCADE,
    "parent_monolog_id" INT REFERENCES "monologs" ("id") ON DELETE RESTRICT,
    "participant_id" INT NOT NULL REFERENCES "participants" ("id") ON DELETE RESTRICT,
    "provider_id" INT NOT NULL REFERENCES "providers" ("id") ON DELETE RESTRICT,
    "mode_id" INT NOT NULL REFERENCES "modes" ("id") ON DELETE RESTRICT,
    CONSTRAINT "ck_monologs_role" CHECK ("role" IN ('user', 'assistant')),
    CONSTRAINT "ck_monologs_assistant_parent" CHECK ("role" <> 'assistant' OR "parent_monolog_id" IS NOT NULL),
    CONSTRAINT "ck_monologs_closed_last_message" CHECK (("completed_at" IS NULL) = ("last_message_id" IS NULL))
);
CREATE INDEX IF NOT EXISTS "idx_monolog_session_role" ON "monologs" ("session_id", "role");
CREATE INDEX IF NOT EXISTS "idx_monolog_parent" ON "monologs" ("parent_monolog_id");
CREATE INDEX IF NOT EXISTS "idx_monolog_completed_at" ON "monologs" ("completed_at");
CREATE UNIQUE INDEX IF NOT EXISTS "uq_monologs_open" ON "monologs" ("session_id", "role") WHERE "completed_at" IS NULL;
CREATE INDEX IF NOT EXISTS "idx_monolog_embedding_hnsw" ON "monologs" USING hnsw ("embedding" vector_cosine_ops);
COMMENT ON COLUMN "monologs"."role" IS 'Роль в разговоре';
COMMENT ON COLUMN "monologs"."first_message_id" IS 'Реплика, открывшая монолог';
COMMENT ON COLUMN "monologs"."last_message_id" IS 'Реплика, закрывшая монолог';
COMMENT ON COLUMN "monologs"."current_message_id" IS 'Последняя учтенная реплика';
COMMENT ON COLUMN "monologs"."cost" IS 'Стоимость в USD';
COMMENT ON COLUMN "monologs"."completed_at" IS 'NULL - монолог открыт';
COMMENT ON TABLE "monologs" IS 'Монолог - непрерывная речь одного участника, пока не заговорит другой.';
CREATE TABLE IF NOT EXISTS "error_logs" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "occurred_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "reason" TEXT NOT NULL,
    "payload" TEXT
);
CREATE INDEX IF NOT EXISTS "idx_error_log_occurred_at" ON "error_logs" ("occurred_at");
COMMENT ON COLUMN "error_logs"."reason" IS 'Причина отказа';
COMMENT ON COLUMN "error_logs"."payload" IS 'Исходный payload (JSON)';
CREATE TABLE IF NOT EXISTS "aerich" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "version" VARCHAR(255) NOT NULL,
    "app" VARCHAR(100) NOT NULL,
    "content" JSONB NOT NULL
);"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        """
