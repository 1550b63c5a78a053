"""Operations layer: pricing and billing workflows."""
