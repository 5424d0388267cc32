from tortoise import fields, models


class ErrorLog(models.Model):
    """Карантин: всё, что не удалось применить, сохраняется для разбора"""
    id = fields.IntField(pk=True)
    occurred_at = fields.DatetimeField(auto_now_add=True)
    reason = fields.TextField(description="Причина отказа")
    payload = fields.TextField(null=True, description="Исходный payload (JSON)")

    class Meta:
        table = "error_logs"
        indexes = [
            models.Index(fields=["occurred_at"], name="idx_error_log_occurred_at"),
        ]

    def __str__(self):
        return f"ErrorLog(id={self.id}, reason='{self.reason[:50]}')"
