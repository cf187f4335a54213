"""Pure domain layer: clock, filters, DTOs, lifecycle tables, payout contract."""
