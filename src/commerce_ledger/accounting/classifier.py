"""Classification of outcomes into expenses and contra-transactions."""

from typing import Any, Dict, Optional, Set

from .models import ConceptCategory


class TransactionClassifier:
    """Maps an outcome's concept type to its accounting category."""

    # Normalized concept types per category; anything else is an expense
    CONCEPT_EQUIVALENTS: Dict[ConceptCategory, Set[str]] = {
        ConceptCategory.PAYMENT_REFUND: {
            "payment-refund",
            "service-refund",
            "cancellation-refund",
        },
        ConceptCategory.COMMISSION_REVERSAL: {"commission-reversal"},
    }

    @staticmethod
    def normalize_concept(concept: Optional[str]) -> str:
        """Normalize a concept type string for comparison.

        ``PAYMENT_REFUND``, ``Payment Refund`` and ``payment-refund`` all
        normalize to ``payment-refund``.
        """
        if not concept:
            return ""
        return "-".join(concept.strip().lower().replace("_", " ").split())

    def classify_concept(self, concept: Optional[str]) -> ConceptCategory:
        """Classify a raw concept type string."""
        normalized = self.normalize_concept(concept)
        for category, equivalents in self.CONCEPT_EQUIVALENTS.items():
            if normalized in equivalents:
                return category
        return ConceptCategory.EXPENSE

    def classify(self, outcome: Any) -> ConceptCategory:
        """Classify an outcome by its ``concept_type``, falling back to ``type``."""
        concept = getattr(outcome, "concept_type", None) or getattr(outcome, "type", None)
        return self.classify_concept(concept)


_default_classifier = TransactionClassifier()


def classify(outcome: Any) -> ConceptCategory:
    """Classify an outcome with the default classifier."""
    return _default_classifier.classify(outcome)


def classify_concept(concept: Optional[str]) -> ConceptCategory:
    """Classify a concept type string with the default classifier."""
    return _default_classifier.classify_concept(concept)
