"""Oracle protocol for admission checks."""

from typing import Any, List, Protocol

from kubegate.core.schema.violation import Violation


class Oracle(Protocol):
    """Admission check interface.

    An oracle is a callable that checks a manifest bundle and returns a list
    of violations. Oracles represent different kinds of validation:

    - Structural oracles: required fields, naming rules, duplicate objects
    - Schema oracles: upstream OpenAPI schema validation
    - Policy oracles: organisation rules such as pinned image tags
    - Reference oracles: cross-object consistency (Service selectors, HPA targets)

    Multiple oracles are combined by the pipeline's check profiles.

    Example:
        def my_oracle(bundle: ManifestBundle) -> List[Violation]:
            violations = []
            # ... validation logic ...
            return violations
    """

    def __call__(self, artifact: Any) -> List[Violation]:
        """Check a bundle and return violations.

        Args:
            artifact: The manifest bundle to check

        Returns:
            List of violations found. Empty list if the bundle passes.
        """
        ...
