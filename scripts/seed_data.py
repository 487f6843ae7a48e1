"""
Popula o banco com dados de demonstração: usuários de cada perfil, tipos de EPI
e um checklist diário. Pode ser executado várias vezes; registros existentes
são mantidos.

    python scripts/seed_data.py
"""
import sys
import os
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

import structlog

from epitrack.db import Base, SessionLocal, engine
from epitrack.logging import setup_logging
from epitrack.models.models import Checklist, EquipmentType, User
from epitrack.auth.security import get_password_hash
from epitrack.schemas.checklists import ChecklistCreate, ChecklistItemInput
from epitrack.schemas.common import ChecklistType, EpiCategory, Role
from epitrack.schemas.epi_types import EpiTypeCreate, InspectionCriterion
from epitrack.schemas.users import UserCreate
from epitrack.services.audit import create_audit_log
from epitrack.services.catalog import create_epi_type
from epitrack.services.checklists import create_checklist
from epitrack.services.time_rules import now_utc
from epitrack.services.users import create_user


logger = structlog.get_logger("seed")

DEMO_PASSWORD = os.getenv("SEED_PASSWORD", "senha123")

EPI_TYPES = [
    {
        "name": "Capacete de Segurança",
        "category": EpiCategory.protecao_cabeca,
        "description": "Capacete classe B com suspensão ajustável",
        "technical_standard": "ABNT NBR 8221",
        "manufacturer": "MSA",
        "model": "V-Gard",
        "ca_number": "CA-31469",
        "lifespan_months": 24,
        "criteria": [
            ("Casco íntegro", "Sem trincas, furos ou deformações"),
            ("Suspensão", "Carneira e jugular em bom estado"),
        ],
    },
    {
        "name": "Protetor Auricular Tipo Plug",
        "category": EpiCategory.protecao_auditiva,
        "description": "Protetor auricular de silicone reutilizável",
        "technical_standard": "ANSI S3.19",
        "manufacturer": "3M",
        "model": "1271",
        "ca_number": "CA-5745",
        "lifespan_months": 6,
        "criteria": [
            ("Limpeza", "Plug limpo e sem resíduos"),
            ("Elasticidade", "Material sem ressecamento"),
        ],
    },
    {
        "name": "Luva de Vaqueta",
        "category": EpiCategory.protecao_maos,
        "description": "Luva de couro para proteção contra agentes abrasivos",
        "technical_standard": "ABNT NBR 13712",
        "manufacturer": "Volk",
        "model": "VV-01",
        "ca_number": "CA-12345",
        "lifespan_months": 3,
        "criteria": [
            ("Costuras", "Costuras sem rompimento"),
            ("Couro", "Sem furos ou desgaste excessivo"),
        ],
    },
]


def _get_user(db, email):
    return db.query(User).filter(User.email == email).first()


def seed_users(db):
    admin = _get_user(db, "admin@epitrack.com.br")
    if admin is None:
        # Bootstrap account; every other user is created on its behalf
        admin = User(
            name="Administrador",
            email="admin@epitrack.com.br",
            employee_id="ADM001",
            password_hash=get_password_hash(DEMO_PASSWORD),
            role=Role.admin.value,
            department="Administração",
            job_role="Administrador do Sistema",
            supervised_employee_ids=[],
            is_active=True,
        )
        db.add(admin)
        db.flush()
        create_audit_log(db, "user", admin.id, "CREATE", actor=None, source="seed")
        logger.info("seed_user_created", email=admin.email, role=admin.role)

    def ensure(email, **fields):
        user = _get_user(db, email)
        if user is not None:
            return user
        payload = UserCreate(email=email, password=DEMO_PASSWORD, **fields)
        user = create_user(db, payload, admin, get_password_hash(payload.password))
        logger.info("seed_user_created", email=email, role=user.role)
        return user

    ensure(
        "tecnico@epitrack.com.br",
        name="Técnica de Segurança",
        role=Role.safety_technician,
        department="Segurança do Trabalho",
        employee_id="TST001",
        job_role="Técnico de Segurança",
    )
    supervisor = ensure(
        "supervisor@epitrack.com.br",
        name="Supervisor de Produção",
        role=Role.supervisor,
        department="Produção",
        employee_id="SUP001",
        job_role="Supervisor",
    )
    ensure(
        "colaborador@epitrack.com.br",
        name="Colaborador de Produção",
        role=Role.employee,
        department="Produção",
        employee_id="EMP001",
        job_role="Operador de Máquinas",
        supervisor_id=supervisor.id,
    )
    return admin


def seed_epi_types(db, actor):
    created = []
    expiry = now_utc() + timedelta(days=365)
    for data in EPI_TYPES:
        epi = db.query(EquipmentType).filter(EquipmentType.ca_number == data["ca_number"]).first()
        if epi is None:
            payload = EpiTypeCreate(
                name=data["name"],
                category=data["category"],
                description=data["description"],
                technical_standard=data["technical_standard"],
                manufacturer=data["manufacturer"],
                model=data["model"],
                ca_number=data["ca_number"],
                ca_expiry_date=expiry,
                lifespan_months=data["lifespan_months"],
                inspection_criteria=[InspectionCriterion(criterion=c, description=d) for c, d in data["criteria"]],
            )
            epi = create_epi_type(db, payload, actor)
            logger.info("seed_epi_type_created", ca_number=epi.ca_number)
        created.append(epi)
    return created


def seed_checklist(db, actor, epi_types):
    name = "Inspeção Diária de EPIs - Produção"
    if db.query(Checklist).filter(Checklist.name == name).first():
        return
    payload = ChecklistCreate(
        name=name,
        description="Verificação diária dos EPIs obrigatórios no setor de produção",
        type=ChecklistType.daily,
        department="Produção",
        items=[ChecklistItemInput(epi_type_id=epi.id, order=i) for i, epi in enumerate(epi_types)],
        frequency_days=1,
        preferred_time="07:30",
    )
    checklist = create_checklist(db, payload, actor)
    logger.info("seed_checklist_created", checklist_id=str(checklist.id))


def seed_data():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        admin = seed_users(db)
        epi_types = seed_epi_types(db, admin)
        seed_checklist(db, admin, epi_types)
        db.commit()
        logger.info("seed_completed")
    except Exception:
        db.rollback()
        logger.exception("seed_failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging()
    seed_data()
