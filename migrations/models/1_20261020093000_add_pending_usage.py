from tortoise import BaseDBAsyncClient

RUN_IN_TRANSACTION = True


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        ALTER TABLE "monologs" ADD "pending_tokens_input" INT;
        ALTER TABLE "monologs" ADD "pending_tokens_output" INT;
        ALTER TABLE "monologs" ADD "pending_cost" DECIMAL(18,8);
        COMMENT ON COLUMN "monologs"."pending_cost" IS 'Последняя стоимость открытого ответа';"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        ALTER TABLE "monologs" DROP COLUMN "pending_tokens_input";
        ALTER TABLE "monologs" DROP COLUMN "pending_tokens_output";
        ALTER TABLE "monologs" DROP COLUMN "pending_cost";"""
