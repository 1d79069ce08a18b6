from types import MappingProxyType
from typing import List

from graph.classify import WorkerCategory

# Only the length of each list is used as the completion threshold
DOCUMENT_CATALOG = MappingProxyType({
    WorkerCategory.DEPENDENT: (
        "Cédula de identidad",
        "Últimas 3 liquidaciones de sueldo",
        "Certificado de antigüedad laboral",
        "Certificado de cotizaciones AFP (últimos 12 meses)",
    ),
    WorkerCategory.INDEPENDENT: (
        "Cédula de identidad",
        "Últimas 2 declaraciones de renta",
        "Boletas de honorarios (últimos 12 meses)",
        "Carpeta tributaria",
        "Certificado de inicio de actividades",
    ),
    WorkerCategory.PARTNER: (
        "Cédula de identidad",
        "Declaraciones de renta personal y de la empresa",
        "Escritura de constitución de la sociedad",
        "Certificado de vigencia de la sociedad",
        "Balances de los últimos 2 años",
        "Carpeta tributaria de la empresa",
    ),
})

CATEGORY_TITLES = {
    WorkerCategory.DEPENDENT: "Dependiente",
    WorkerCategory.INDEPENDENT: "Independiente",
    WorkerCategory.PARTNER: "Socio Empresa",
}


def required_documents(category: str) -> List[str]:
    """Ordered document labels for a worker category ([] when unknown)."""
    return list(DOCUMENT_CATALOG.get(category, ()))


def format_checklist(category: str) -> str:
    labels = required_documents(category)
    title = CATEGORY_TITLES.get(category, category)
    lines = "\n".join(f"- {label}" for label in labels)
    return f"📄 Documentos requeridos ({title}):\n{lines}"
