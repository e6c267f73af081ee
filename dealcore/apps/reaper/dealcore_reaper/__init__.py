"""dealcore reaper: background sweepers for purchase reconciliation and guard inactivity."""
