from tortoise import fields, models


class Session(models.Model):
    """Сессия рантайма ассистента - контейнер монологов"""
    id = fields.IntField(pk=True)
    session_id = fields.CharField(max_length=100, unique=True, description="Внешний ID сессии из рантайма")
    title = fields.CharField(max_length=500, null=True, description="Заголовок сессии")
    working_directory = fields.CharField(max_length=1000, null=True, description="Рабочая директория")
    created_at = fields.DatetimeField(description="Время создания сессии в рантайме")
    updated_at = fields.DatetimeField(null=True)

    monologs: fields.ReverseRelation["Monolog"]

    class Meta:
        table = "sessions"

    def __str__(self):
        return f"Session(id={self.id}, session_id='{self.session_id}')"
